"""Tests for RunLedger - append-only, hash-chained status trail."""

from __future__ import annotations

from stagecraft.core.run_ledger import RunLedger
from stagecraft.models.ledger import LedgerEntry


class TestRunLedger:
    def test_append_seals_entry(self, ledger: RunLedger, run_id: str):
        sealed = ledger.append(
            LedgerEntry(run_id=run_id, stage_id="BuildAPI", state_transition="not_started->running")
        )
        assert sealed.entry_hash
        assert sealed.previous_entry_hash == ""

    def test_entries_are_chained(self, ledger: RunLedger, run_id: str):
        first = ledger.append(
            LedgerEntry(run_id=run_id, stage_id="BuildAPI", state_transition="not_started->running")
        )
        second = ledger.append(
            LedgerEntry(run_id=run_id, stage_id="BuildAPI", state_transition="running->succeeded")
        )
        assert second.previous_entry_hash == first.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-a", stage_id="s", state_transition="not_started->running"))
        other = ledger.append(
            LedgerEntry(run_id="run-b", stage_id="s", state_transition="not_started->running")
        )
        assert other.previous_entry_hash == ""

    def test_get_run_entries_in_order(self, ledger: RunLedger, run_id: str):
        for transition in ("not_started->running", "running->succeeded"):
            ledger.append(LedgerEntry(run_id=run_id, stage_id="BuildAPI", state_transition=transition))
        entries = ledger.get_run_entries(run_id)
        assert [e.state_transition for e in entries] == ["not_started->running", "running->succeeded"]

    def test_round_trips_detail_and_refs(self, ledger: RunLedger, run_id: str):
        ledger.append(
            LedgerEntry(
                run_id=run_id,
                stage_id="BuildAPI",
                action_id="build-api",
                state_transition="running->succeeded",
                artifact_references=["BuildAPI/imagedefinitions"],
                detail={"image_uri": "registry/svc:abc123def"},
            )
        )
        (entry,) = ledger.get_run_entries(run_id)
        assert entry.action_id == "build-api"
        assert entry.artifact_references == ["BuildAPI/imagedefinitions"]
        assert entry.detail == {"image_uri": "registry/svc:abc123def"}
        assert entry.target_state == "succeeded"

    def test_run_ids_most_recent_first(self, ledger: RunLedger):
        for rid in ("run-1", "run-2", "run-3"):
            ledger.append(LedgerEntry(run_id=rid, stage_id="s", state_transition="not_started->running"))
        assert ledger.get_all_run_ids() == ["run-3", "run-2", "run-1"]

    def test_verify_untouched_chain(self, ledger: RunLedger, run_id: str):
        for i in range(4):
            ledger.append(LedgerEntry(run_id=run_id, stage_id=f"s{i}", state_transition="not_started->running"))
        assert ledger.verify_chain(run_id) is True

    def test_verify_empty_run(self, ledger: RunLedger):
        assert ledger.verify_chain("no-such-run") is True
