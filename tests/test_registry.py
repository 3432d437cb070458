"""Tests for the ballot registry state machine."""

import threading

import pytest

from ballotproof.events import BallotClosed, BallotCreated, MerkleRootUpdated, VoteCast
from ballotproof.exceptions import (
    AlreadyVoted,
    BallotNotActive,
    EmptyProposalList,
    InvalidProof,
    InvalidProposal,
    MalformedRoot,
    UnknownBallot,
)
from ballotproof.merkle import EMPTY_ROOT, MerkleAccumulator
from ballotproof.metrics import metrics
from conftest import make_address

PROPOSALS = ["Alpha", "Beta", "Gamma"]


@pytest.fixture
def tree(voters):
    return MerkleAccumulator(voters[:6])


@pytest.fixture
def ballot(registry, tree):
    return registry.create_ballot(tree.root, PROPOSALS, sender=make_address(100))


class TestCreateBallot:
    def test_ids_are_sequential(self, registry, tree):
        assert registry.create_ballot(tree.root, ["A"]) == 0
        assert registry.create_ballot(tree.root, ["B"]) == 1
        assert registry.ballot_count == 2

    def test_new_ballot_is_active_with_zero_tallies(self, registry, ballot, tree):
        assert registry.is_active(ballot)
        assert registry.get_proposal_names(ballot) == PROPOSALS
        assert registry.get_merkle_root(ballot) == tree.root
        assert [registry.get_vote_count(ballot, i) for i in range(3)] == [0, 0, 0]

    def test_empty_proposals_rejected(self, registry, tree):
        with pytest.raises(EmptyProposalList):
            registry.create_ballot(tree.root, [])
        assert registry.ballot_count == 0

    @pytest.mark.parametrize("root", [b"", b"\x01" * 31, b"\x01" * 33, "0x" + "00" * 32, None])
    def test_malformed_root_rejected(self, registry, root):
        with pytest.raises(MalformedRoot):
            registry.create_ballot(root, ["A"])
        assert registry.ballot_count == 0

    def test_empty_whitelist_ballot_is_legal(self, registry, voters):
        ballot_id = registry.create_ballot(EMPTY_ROOT, ["A"])
        with pytest.raises(InvalidProof):
            registry.vote(voters[0], ballot_id, 0, [])

    def test_creator_recorded(self, registry, ballot):
        assert registry.get_ballot(ballot).creator == make_address(100)

    def test_duplicate_proposal_names_allowed(self, registry, tree):
        ballot_id = registry.create_ballot(tree.root, ["Same", "Same"])
        assert registry.get_proposal_names(ballot_id) == ["Same", "Same"]


class TestVote:
    def test_whitelisted_vote_counts(self, registry, ballot, tree, voters):
        registry.vote(voters[0], ballot, 1, tree.proof(voters[0]))
        assert registry.get_vote_count(ballot, 1) == 1
        assert registry.has_voted(ballot, voters[0])
        assert not registry.has_voted(ballot, voters[1])
        assert metrics.get_counter("ballotproof_votes_cast_total") == 1

    def test_lowercase_sender_is_same_identity(self, registry, ballot, tree, voters):
        registry.vote(voters[0].lower(), ballot, 0, tree.proof(voters[0]))
        assert registry.has_voted(ballot, voters[0])
        with pytest.raises(AlreadyVoted):
            registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))

    def test_double_vote_rejected_even_for_other_proposal(self, registry, ballot, tree, voters):
        registry.vote(voters[2], ballot, 0, tree.proof(voters[2]))
        with pytest.raises(AlreadyVoted):
            registry.vote(voters[2], ballot, 2, tree.proof(voters[2]))
        assert registry.get_results(ballot) == [("Alpha", 1), ("Beta", 0), ("Gamma", 0)]

    def test_outsider_rejected(self, registry, ballot, tree, voters):
        outsider = voters[7]
        with pytest.raises(InvalidProof):
            registry.vote(outsider, ballot, 0, tree.proof(voters[0]))
        with pytest.raises(InvalidProof):
            registry.vote(outsider, ballot, 0, [])
        assert not registry.has_voted(ballot, outsider)
        assert metrics.get_counter("ballotproof_votes_rejected_total", {"reason": "proof"}) == 2

    def test_borrowed_proof_rejected(self, registry, ballot, tree, voters):
        with pytest.raises(InvalidProof):
            registry.vote(voters[1], ballot, 0, tree.proof(voters[0]))

    def test_malformed_proof_rejected(self, registry, ballot, voters):
        with pytest.raises(InvalidProof):
            registry.vote(voters[0], ballot, 0, ["0xdeadbeef"])

    def test_non_address_sender_rejected(self, registry, ballot):
        with pytest.raises(InvalidProof):
            registry.vote("not-an-address", ballot, 0, [])

    def test_unknown_ballot(self, registry, tree, voters):
        with pytest.raises(UnknownBallot):
            registry.vote(voters[0], 0, 0, tree.proof(voters[0]))
        with pytest.raises(UnknownBallot):
            registry.vote(voters[0], -1, 0, tree.proof(voters[0]))

    @pytest.mark.parametrize("index", [-1, 3, 99, "0", None, True, False])
    def test_invalid_proposal(self, registry, ballot, tree, voters, index):
        with pytest.raises(InvalidProposal):
            registry.vote(voters[0], ballot, index, tree.proof(voters[0]))
        assert not registry.has_voted(ballot, voters[0])

    def test_bool_is_not_a_ballot_id(self, registry, tree, voters):
        registry.create_ballot(tree.root, ["A"])
        registry.create_ballot(tree.root, ["B"])
        with pytest.raises(UnknownBallot):
            registry.vote(voters[0], True, 0, tree.proof(voters[0]))
        with pytest.raises(UnknownBallot):
            registry.get_vote_count(False, 0)
        assert not registry.has_voted(1, voters[0])

    def test_closed_ballot_rejects_votes(self, registry, ballot, tree, voters):
        registry.close_ballot(ballot)
        with pytest.raises(BallotNotActive):
            registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))
        assert registry.get_vote_count(ballot, 0) == 0


class TestScenarios:
    def test_three_voters_two_proposals(self, registry, voters):
        a, b, c = voters[:3]
        tree = MerkleAccumulator([a, b, c])
        ballot_id = registry.create_ballot(tree.root, ["X", "Y"])

        registry.vote(a, ballot_id, 1, tree.proof(a))

        assert registry.get_vote_count(ballot_id, 1) == 1
        assert registry.has_voted(ballot_id, a)
        assert not registry.has_voted(ballot_id, b)

    def test_vote_on_missing_ballot_999(self, registry, tree, voters):
        registry.create_ballot(tree.root, ["A"])
        with pytest.raises(UnknownBallot):
            registry.vote(voters[0], 999, 0, tree.proof(voters[0]))

    def test_ballots_are_isolated(self, registry, tree, voters):
        first = registry.create_ballot(tree.root, ["A", "B"])
        second = registry.create_ballot(tree.root, ["A", "B"])

        registry.vote(voters[0], second, 0, tree.proof(voters[0]))
        registry.close_ballot(second)

        assert registry.get_results(first) == [("A", 0), ("B", 0)]
        assert not registry.has_voted(first, voters[0])
        assert registry.is_active(first)
        registry.vote(voters[0], first, 1, tree.proof(voters[0]))
        assert registry.get_vote_count(first, 1) == 1


class TestCheckOrder:
    """The first failing check decides the error."""

    def test_closed_beats_invalid_proposal(self, registry, ballot):
        registry.close_ballot(ballot)
        with pytest.raises(BallotNotActive):
            registry.vote(make_address(50), ballot, 99, [])

    def test_invalid_proposal_beats_double_vote(self, registry, ballot, tree, voters):
        registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))
        with pytest.raises(InvalidProposal):
            registry.vote(voters[0], ballot, 99, tree.proof(voters[0]))

    def test_double_vote_beats_bad_proof(self, registry, ballot, tree, voters):
        registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))
        with pytest.raises(AlreadyVoted):
            registry.vote(voters[0], ballot, 1, [])


class TestRootRotation:
    def test_old_proofs_stop_verifying(self, registry, ballot, tree, voters):
        new_tree = MerkleAccumulator(voters)
        registry.update_merkle_root(ballot, new_tree.root)

        with pytest.raises(InvalidProof):
            registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))
        registry.vote(voters[0], ballot, 0, new_tree.proof(voters[0]))
        registry.vote(voters[7], ballot, 1, new_tree.proof(voters[7]))
        assert registry.get_results(ballot) == [("Alpha", 1), ("Beta", 1), ("Gamma", 0)]

    def test_rotation_keeps_tallies_and_voters(self, registry, ballot, tree, voters):
        registry.vote(voters[0], ballot, 2, tree.proof(voters[0]))
        new_tree = MerkleAccumulator(voters)
        registry.update_merkle_root(ballot, new_tree.root)

        assert registry.get_vote_count(ballot, 2) == 1
        with pytest.raises(AlreadyVoted):
            registry.vote(voters[0], ballot, 2, new_tree.proof(voters[0]))

    def test_rotation_allowed_after_close(self, registry, ballot, voters):
        registry.close_ballot(ballot)
        root = MerkleAccumulator(voters).root
        registry.update_merkle_root(ballot, root)
        assert registry.get_merkle_root(ballot) == root

    def test_malformed_root_leaves_ballot_untouched(self, registry, ballot, tree):
        with pytest.raises(MalformedRoot):
            registry.update_merkle_root(ballot, b"\x00" * 10)
        assert registry.get_merkle_root(ballot) == tree.root

    def test_unknown_ballot(self, registry, tree):
        with pytest.raises(UnknownBallot):
            registry.update_merkle_root(5, tree.root)


class TestClose:
    def test_close_is_idempotent(self, registry, ballot):
        registry.close_ballot(ballot)
        registry.close_ballot(ballot)
        assert not registry.is_active(ballot)
        assert len(registry.events.of_type(BallotClosed)) == 1

    def test_close_unknown(self, registry):
        with pytest.raises(UnknownBallot):
            registry.close_ballot(0)

    def test_results_survive_close(self, registry, ballot, tree, voters):
        for i, voter in enumerate(voters[:6]):
            registry.vote(voter, ballot, i % 3, tree.proof(voter))
        registry.close_ballot(ballot)
        info = registry.get_ballot(ballot)
        assert info.tally == (2, 2, 2)
        assert info.voters == 6
        assert not info.active


class TestReads:
    def test_reads_on_unknown_ballot(self, registry):
        for read in (
            registry.get_proposal_names,
            registry.get_merkle_root,
            registry.is_active,
            registry.get_results,
            registry.get_ballot,
        ):
            with pytest.raises(UnknownBallot):
                read(3)
        with pytest.raises(UnknownBallot):
            registry.has_voted(3, make_address(0))

    def test_vote_count_bad_index(self, registry, ballot):
        with pytest.raises(InvalidProposal):
            registry.get_vote_count(ballot, 3)

    def test_has_voted_with_garbage_identity(self, registry, ballot):
        assert registry.has_voted(ballot, "garbage") is False

    def test_snapshot_is_detached(self, registry, ballot, tree, voters):
        before = registry.get_ballot(ballot)
        registry.vote(voters[0], ballot, 0, tree.proof(voters[0]))
        assert before.tally == (0, 0, 0)
        assert registry.get_ballot(ballot).tally == (1, 0, 0)


class TestEvents:
    def test_events_in_commit_order(self, registry, tree, voters):
        ballot_id = registry.create_ballot(tree.root, PROPOSALS)
        registry.vote(voters[0], ballot_id, 1, tree.proof(voters[0]))
        new_root = MerkleAccumulator(voters).root
        registry.update_merkle_root(ballot_id, new_root)
        registry.close_ballot(ballot_id)

        assert registry.events.since(0) == [
            BallotCreated(ballot_id, tuple(PROPOSALS)),
            VoteCast(ballot_id, voters[0], 1),
            MerkleRootUpdated(ballot_id, new_root),
            BallotClosed(ballot_id),
        ]
        assert registry.events.since(3) == [BallotClosed(ballot_id)]

    def test_rejected_calls_emit_nothing(self, registry, ballot, voters):
        count = len(registry.events)
        with pytest.raises(InvalidProof):
            registry.vote(voters[7], ballot, 0, [])
        with pytest.raises(InvalidProposal):
            registry.vote(voters[0], ballot, 5, [])
        assert len(registry.events) == count


class TestConcurrency:
    def test_racing_double_vote_counts_once(self, registry, ballot, tree, voters):
        proof = tree.proof(voters[3])
        outcomes = []
        barrier = threading.Barrier(8)

        def cast():
            barrier.wait()
            try:
                registry.vote(voters[3], ballot, 0, proof)
                outcomes.append("ok")
            except AlreadyVoted:
                outcomes.append("dup")

        threads = [threading.Thread(target=cast) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("dup") == 7
        assert registry.get_vote_count(ballot, 0) == 1

    def test_parallel_voters_all_counted(self, registry, ballot, tree, voters):
        threads = [
            threading.Thread(target=registry.vote, args=(v, ballot, 0, tree.proof(v)))
            for v in voters[:6]
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert registry.get_vote_count(ballot, 0) == 6
