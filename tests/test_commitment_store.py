import json

import pytest

from database import Commitment, CommitmentStore, Wallet
from scripts.find_invalid_pf_state import find_invalid_leaves


def test_get_or_create_is_idempotent():
    store = CommitmentStore()

    first, created = store.get_or_create("abc", 0)
    second, created_again = store.get_or_create("abc", 0)

    assert created is True
    assert created_again is False
    assert first == second
    assert len(store) == 1


def test_distinct_nonces_get_distinct_seeds():
    store = CommitmentStore()

    a, _ = store.get_or_create("abc", 0)
    b, _ = store.get_or_create("abc", 1)
    c, _ = store.get_or_create("xyz", 0)

    assert len({a.server_seed, b.server_seed, c.server_seed}) == 3


def test_get_missing_returns_none():
    assert CommitmentStore().get("abc", 0) is None


def test_set_refuses_to_overwrite():
    store = CommitmentStore()
    original, _ = store.get_or_create("abc", 0)

    with pytest.raises(ValueError):
        store.set("abc", 0, Commitment.create())

    # Same leaf again is fine
    store.set("abc", 0, original)
    assert store.get("abc", 0) == original


def test_merge_only_adds_missing_leaves():
    store = CommitmentStore()
    kept, _ = store.get_or_create("abc", 0)

    incoming = CommitmentStore()
    incoming.get_or_create("abc", 1)
    incoming._state["abc"]["0"] = Commitment.create()

    store.merge(incoming)

    assert store.get("abc", 0) == kept
    assert store.get("abc", 1) == incoming.get("abc", 1)


def test_invalid_leaf_is_treated_as_missing():
    store = CommitmentStore.from_dict({"abc": {"0": {"serverSeed": "", "serverSeedHash": ""}}})

    assert store.get("abc", 0) == Commitment("", "")
    assert store.get_valid("abc", 0) is None

    replacement, created = store.get_or_create("abc", 0)

    assert created is True
    assert replacement.is_valid()
    assert store.get("abc", 0) == replacement


def test_merge_repairs_invalid_leaves():
    store = CommitmentStore.from_dict({"abc": {"0": {"serverSeed": "deadbeef", "serverSeedHash": "00"}}})
    incoming = CommitmentStore()
    fresh, _ = incoming.get_or_create("abc", 0)

    store.merge(incoming)

    assert store.get("abc", 0) == fresh


def test_persisted_layout_uses_string_nonces():
    store = CommitmentStore()
    commitment, _ = store.get_or_create("abc", 5)

    data = json.loads(json.dumps(store.to_dict()))

    assert data == {
        "abc": {"5": {"serverSeed": commitment.server_seed, "serverSeedHash": commitment.server_seed_hash}}
    }
    assert CommitmentStore.from_dict(data).get("abc", 5) == commitment


def test_commitment_validity():
    assert Commitment.create().is_valid()
    assert not Commitment(server_seed="", server_seed_hash="abc").is_valid()
    assert not Commitment(server_seed="abc", server_seed_hash=" ").is_valid()
    assert not Commitment(server_seed="abc", server_seed_hash=Commitment.create().server_seed_hash).is_valid()


def test_wallet_state_survives_save_and_load(db, make_player):
    user = make_player()
    wallet = db.get_wallet_by_user(user.user_id)
    commitment, _ = wallet.provably_fair_state.get_or_create("abc", 0)
    db.save_wallet(wallet)

    loaded = db.get_wallet_by_user(user.user_id)

    assert loaded.provably_fair_state.get("abc", 0) == commitment
    assert loaded.version == wallet.version


def test_find_invalid_leaves_reports_broken_commitments():
    good = Commitment.create()
    state = CommitmentStore.from_dict({
        "abc": {
            "0": good.to_dict(),
            "1": {"serverSeed": "", "serverSeedHash": good.server_seed_hash},
            "2": {"serverSeed": good.server_seed},
            "3": {"serverSeed": "deadbeef", "serverSeedHash": good.server_seed_hash},
        }
    })
    wallet = Wallet(wallet_id=7, user_id=3, public_key="Pubkey", encrypted_private_key="x", provably_fair_state=state)

    invalid = find_invalid_leaves([wallet])

    assert {(r["nonce"], r["reason"]) for r in invalid} == {
        ("1", "missing serverSeed"),
        ("2", "missing serverSeedHash"),
        ("3", "hash does not match seed"),
    }
    assert all(r["wallet_id"] == 7 for r in invalid)
