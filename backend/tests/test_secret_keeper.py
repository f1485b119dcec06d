import asyncio

import pytest

from agents.secret_keeper import SecretKeeper, parse_role, role_commit_hash
from models.errors import AuthenticationError, AuthorizationError, ValidationError
from models.game import GamePhase, PlayerSecret, Role
from services.signature_service import clear_room_message, reveal_secret_message

ROOM = 21


@pytest.fixture
def keeper(store, signatures, chain, wallets):
    chain.seat(ROOM, wallets, phase=GamePhase.REVEAL)
    return SecretKeeper(store=store, signatures=signatures, chain=chain, verify_role_commits=False)


def reveal(keeper, wallet, role, salt="0xsalt", signer=None, delegate=None):
    signer = signer or wallet
    message = reveal_secret_message(ROOM, role, salt)
    return asyncio.run(keeper.reveal_secret(
        ROOM, wallet.address, role, salt, signer.sign(message), delegate
    ))


@pytest.mark.parametrize("value,expected", [(1, Role.MAFIA), ("3", Role.DETECTIVE), (" 4 ", Role.CIVILIAN)])
def test_parse_role_accepts(value, expected):
    assert parse_role(value) is expected


@pytest.mark.parametrize("value", [0, 5, "x", None, 2.0, True, "-1"])
def test_parse_role_rejects(value):
    with pytest.raises(ValidationError):
        parse_role(value)


def test_commit_hash_ignores_0x_prefix():
    assert role_commit_hash(Role.DOCTOR, "0xab12") == role_commit_hash(Role.DOCTOR, "ab12")
    assert role_commit_hash(Role.DOCTOR, "ab12") != role_commit_hash(Role.MAFIA, "ab12")
    assert len(role_commit_hash(Role.DOCTOR, "ab12")) == 32


def test_reveal_stores_secret(keeper, store, wallets):
    assert reveal(keeper, wallets[0], 1) == {"success": True}
    secrets = asyncio.run(store.get_room_secrets(ROOM))
    assert secrets[wallets[0].address.lower()] == PlayerSecret(role=Role.MAFIA, salt="0xsalt")


def test_reveal_is_idempotent_upsert(keeper, store, wallets):
    reveal(keeper, wallets[0], 4)
    reveal(keeper, wallets[0], 4)
    assert len(asyncio.run(store.get_room_secrets(ROOM))) == 1


def test_invalid_role_rejected_before_signature(keeper, store, wallets):
    with pytest.raises(ValidationError):
        asyncio.run(keeper.reveal_secret(ROOM, wallets[0].address, 9, "s", "0xdeadbeef"))
    assert asyncio.run(store.get_room_secrets(ROOM)) is None


def test_bad_signature_stores_nothing(keeper, store, wallets):
    with pytest.raises(AuthenticationError):
        reveal(keeper, wallets[0], 2, signer=wallets[1])
    assert asyncio.run(store.get_room_secrets(ROOM)) is None


def test_reveal_through_session_key(keeper, chain, store, make_wallet, wallets):
    session = make_wallet()
    chain.register_session(wallets[2], session, room_id=ROOM)
    reveal(keeper, wallets[2], 3, signer=session, delegate=session.address)
    assert asyncio.run(store.get_room_secrets(ROOM))[wallets[2].address.lower()].role is Role.DETECTIVE


def test_role_commit_check(keeper, chain, store, wallets):
    keeper.verify_role_commits = True
    chain.role_commits[(ROOM, wallets[0].address.lower())] = role_commit_hash(Role.MAFIA, "0xsalt")
    with pytest.raises(AuthorizationError):
        reveal(keeper, wallets[0], 4)
    assert reveal(keeper, wallets[0], 1) == {"success": True}


def test_night_summary_counts_alive_only(keeper, chain, wallets):
    roles = [1, 3, 2, 4, 1]
    for w, r in zip(wallets, roles):
        reveal(keeper, w, r)
    assert asyncio.run(keeper.night_summary(ROOM)) == {"expectedTownReveals": 2, "expectedMafiaReveals": 2}
    chain.kill(ROOM, wallets[4])
    chain.kill(ROOM, wallets[1])
    assert asyncio.run(keeper.night_summary(ROOM)) == {"expectedTownReveals": 1, "expectedMafiaReveals": 1}


def test_night_summary_without_secrets(keeper):
    summary = asyncio.run(keeper.night_summary(ROOM))
    assert summary["expectedTownReveals"] == 0
    assert summary["expectedMafiaReveals"] == 0
    assert "warning" in summary


def test_clear_room_requires_host(keeper, store, wallets):
    reveal(keeper, wallets[1], 4)
    message = clear_room_message(ROOM)
    with pytest.raises(AuthenticationError):
        asyncio.run(keeper.clear_room_signed(ROOM, wallets[1].sign(message)))
    assert asyncio.run(store.get_room_secrets(ROOM)) is not None

    assert asyncio.run(keeper.clear_room_signed(ROOM, wallets[0].sign(message))) == {"success": True}
    assert asyncio.run(store.get_room_secrets(ROOM)) is None
