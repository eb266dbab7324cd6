import random
from datetime import timedelta
from types import SimpleNamespace

import pytest

from foodlink.core.errors import AuthorizationError, ChatArchivedError, GuardViolation, NotFoundError, ValidationError
from foodlink.core.roles import PartyRole
from foodlink.domains.chat import service as chat
from foodlink.domains.chat.service import Party
from foodlink.domains.surplus import service as surplus


@pytest.fixture
def parties(make_user):
    canteen = make_user("Main Canteen", "canteen")
    ngo = make_user("City Food Bank", "ngo")
    driver = make_user("Ravi", "volunteer")
    return SimpleNamespace(
        canteen=Party.of(canteen),
        ngo=Party.of(ngo),
        driver=Party.of(driver),
    )


@pytest.fixture
def delivery(db, new_surplus, parties, now):
    """A claimed record with a driver assigned and code 4821."""
    rec = new_surplus(parties.canteen.id)
    surplus.claim_surplus(db, surplus_id=rec.id, recipient_id=parties.ngo.id, recipient_name=parties.ngo.name, now=now)
    return surplus.assign_driver(db, surplus_id=rec.id, driver_id=parties.driver.id, now=now, code_factory=lambda: "4821")


def _complete(db, rec, parties, now):
    surplus.verify_pickup(db, surplus_id=rec.id, canteen_id=parties.canteen.id, code="4821", now=now)
    surplus.verify_delivery(db, surplus_id=rec.id, recipient_id=parties.ngo.id, code="4821", now=now)


def test_conversation_is_per_unordered_pair(db, parties, now):
    one = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    two = chat.get_or_create_conversation(db, me=parties.ngo, other=parties.canteen, now=now)
    assert one.id == two.id
    assert one.has_participant(parties.canteen.id) and one.has_participant(parties.ngo.id)
    assert one.role_of(parties.ngo.id) is PartyRole.NGO


def test_self_chat_rejected(db, parties):
    with pytest.raises(ValidationError):
        chat.get_or_create_conversation(db, me=parties.ngo, other=parties.ngo)


def test_driver_chat_auto_links_active_delivery(db, parties, delivery, now):
    convo = chat.get_or_create_conversation(db, me=parties.driver, other=parties.canteen, now=now)
    assert convo.delivery_surplus_id == delivery.id


def test_explicit_link_must_involve_both(db, parties, new_surplus, now):
    unrelated = new_surplus("someone-else")
    with pytest.raises(ValidationError) as exc:
        chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, linked_surplus_id=unrelated.id, now=now)
    assert exc.value.code == "UNRELATED_DELIVERY"


def test_send_requires_active_delivery(db, parties, now):
    convo = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    with pytest.raises(AuthorizationError) as exc:
        chat.send_message(db, chat_id=convo.id, sender_id=parties.canteen.id, sender_role="canteen", text="hi", now=now)
    assert exc.value.code == "CONTACT_RESTRICTED"
    assert exc.value.message == "Chat restricted to active deliveries."
    assert chat.list_messages(db, chat_id=convo.id, user_id=parties.canteen.id) == []


def test_empty_text_rejected(db, parties, delivery, now):
    convo = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    with pytest.raises(ValidationError) as exc:
        chat.send_message(db, chat_id=convo.id, sender_id=parties.canteen.id, sender_role="canteen", text="   ", now=now)
    assert exc.value.code == "EMPTY_MESSAGE"


def test_messages_then_revocation(db, parties, delivery, now):
    convo = chat.get_or_create_conversation(db, me=parties.driver, other=parties.ngo, now=now)
    first = chat.send_message(
        db, chat_id=convo.id, sender_id=parties.driver.id, sender_role="volunteer", text="On my way", now=now
    )
    assert first.sender_role == "volunteer"
    chat.send_message(
        db,
        chat_id=convo.id,
        sender_id=parties.ngo.id,
        sender_role="ngo",
        text="Gate 3 please",
        now=now + timedelta(minutes=1),
    )
    refreshed = chat.get_conversation(db, chat_id=convo.id, user_id=parties.ngo.id)
    assert refreshed.last_message == "Gate 3 please"

    _complete(db, delivery, parties, now + timedelta(minutes=5))

    # Recipient keeps the chat but can no longer write.
    assert not chat.is_archived_for(db, refreshed, parties.ngo.id)
    assert not chat.can_send(db, refreshed, parties.ngo.id)
    with pytest.raises(AuthorizationError) as exc:
        chat.send_message(db, chat_id=convo.id, sender_id=parties.ngo.id, sender_role="ngo", text="thanks", now=now)
    assert exc.value.code == "CONTACT_RESTRICTED"

    # The driver's side is archived.
    assert chat.is_archived_for(db, refreshed, parties.driver.id)
    with pytest.raises(ChatArchivedError):
        chat.send_message(db, chat_id=convo.id, sender_id=parties.driver.id, sender_role="driver", text="bye", now=now)

    history = chat.list_messages(db, chat_id=convo.id, user_id=parties.driver.id)
    assert [m.text for m in history] == ["On my way", "Gate 3 please"]


def test_driver_list_hides_archived(db, parties, delivery, now):
    with_driver = chat.get_or_create_conversation(db, me=parties.driver, other=parties.canteen, now=now)
    with_ngo = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    assert {c.id for c in chat.list_conversations(db, user_id=parties.driver.id, role=PartyRole.DRIVER)} == {with_driver.id}

    _complete(db, delivery, parties, now)

    assert chat.list_conversations(db, user_id=parties.driver.id, role=PartyRole.DRIVER) == []
    canteen_view = chat.list_conversations(db, user_id=parties.canteen.id, role=PartyRole.CANTEEN)
    assert {c.id for c in canteen_view} == {with_driver.id, with_ngo.id}


def test_finished_link_is_replaced_by_next_delivery(db, parties, delivery, new_surplus, now):
    convo = chat.get_or_create_conversation(db, me=parties.driver, other=parties.canteen, now=now)
    _complete(db, delivery, parties, now)

    nxt = new_surplus(parties.canteen.id)
    surplus.claim_surplus(db, surplus_id=nxt.id, recipient_id=parties.ngo.id, recipient_name="x", now=now)
    surplus.assign_driver(db, surplus_id=nxt.id, driver_id=parties.driver.id, now=now)

    again = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.driver, now=now)
    assert again.id == convo.id
    assert again.delivery_surplus_id == nxt.id
    assert not chat.is_archived_for(db, again, parties.driver.id)


def test_sender_role_must_match(db, parties, delivery, now):
    convo = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    with pytest.raises(AuthorizationError) as exc:
        chat.send_message(db, chat_id=convo.id, sender_id=parties.canteen.id, sender_role="ngo", text="hi", now=now)
    assert exc.value.code == "ROLE_MISMATCH"


def test_outsider_cannot_read_or_write(db, parties, make_user, now):
    convo = chat.get_or_create_conversation(db, me=parties.canteen, other=parties.ngo, now=now)
    outsider = make_user("Another NGO", "ngo")
    with pytest.raises(AuthorizationError):
        chat.list_messages(db, chat_id=convo.id, user_id=outsider.id)
    with pytest.raises(AuthorizationError):
        chat.send_message(db, chat_id=convo.id, sender_id=outsider.id, sender_role="ngo", text="hi", now=now)
    with pytest.raises(NotFoundError):
        chat.get_conversation(db, chat_id="missing", user_id=outsider.id)


def test_order_messages_by_time_then_insertion(now):
    msgs = [
        SimpleNamespace(id=3, sent_at=now, text="c"),
        SimpleNamespace(id=1, sent_at=now, text="a"),
        SimpleNamespace(id=4, sent_at=now + timedelta(seconds=1), text="d"),
        SimpleNamespace(id=2, sent_at=now, text="b"),
        SimpleNamespace(id=0, sent_at=now - timedelta(seconds=1), text="first"),
    ]
    expected = ["first", "a", "b", "c", "d"]
    for seed in range(5):
        shuffled = msgs[:]
        random.Random(seed).shuffle(shuffled)
        assert [m.text for m in chat.order_messages(shuffled)] == expected


def test_explicit_link_to_finished_delivery_rejected(db, parties, delivery, now):
    convo = chat.get_or_create_conversation(db, me=parties.driver, other=parties.ngo, now=now)
    _complete(db, delivery, parties, now)

    with pytest.raises(GuardViolation) as exc:
        chat.get_or_create_conversation(
            db, me=parties.ngo, other=parties.driver, linked_surplus_id=delivery.id, now=now
        )
    assert exc.value.code == "DELIVERY_FINISHED"
    assert chat.get_conversation(db, chat_id=convo.id, user_id=parties.ngo.id).delivery_surplus_id == delivery.id
