"""Tests for InMemoryStorage and InMemoryBlobStore."""

import pytest

from src.models.agent_lead import AgentLead, LeadStatus
from src.models.message import Message, SupportMessage
from src.services.blob_store import InMemoryBlobStore
from src.utils.errors import NotFoundError
from src.utils.ids import utcnow
from tests.utils.factories import make_agent, make_property
from tests.utils.helpers import seed


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_validates_merged_record(storage, buyer):
    """Test updates return a new validated record."""
    prop = seed(storage, make_property(buyer.id))

    updated = await storage.update_property(prop.id, {"status": "pending"})

    assert updated.status.value == "pending"
    assert storage.properties[prop.id] == updated


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_unknown_id_is_not_found(storage):
    """Test updating a missing record raises."""
    with pytest.raises(NotFoundError):
        await storage.update_agreement("missing", {"status": "completed"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_assign_if_vacant_is_conditional(storage, buyer):
    """Test the agent is only set on a vacant or already-matching property."""
    first, second = make_agent(), make_agent()
    prop = seed(storage, make_property(buyer.id))

    assert (await storage.assign_property_agent_if_vacant(prop.id, first.id)).agent_id == first.id
    assert await storage.assign_property_agent_if_vacant(prop.id, first.id) is not None
    assert await storage.assign_property_agent_if_vacant(prop.id, second.id) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_claim_and_release_lead(storage):
    """Test claim only from available by the lead's agent; release only from claimed."""
    await storage.insert_leads([AgentLead(id="l1", property_id="p1", agent_id="a1")])

    assert await storage.claim_lead_if_available("l1", "a2") is None
    claimed = await storage.claim_lead_if_available("l1", "a1")
    assert claimed.status == LeadStatus.CLAIMED and claimed.claimed_at is not None
    assert await storage.claim_lead_if_available("l1", "a1") is None

    released = await storage.release_lead("l1")
    assert released.status == LeadStatus.AVAILABLE and released.claimed_at is None
    assert await storage.release_lead("l1") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_properties_state_is_case_insensitive(storage, buyer):
    """Test state filtering ignores case."""
    ca = seed(storage, make_property(buyer.id, state="Ca"))
    seed(storage, make_property(buyer.id, state="NY"))

    assert await storage.list_properties(state="CA") == [ca]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delete_leads_for_property(storage):
    """Test only the property's leads are removed."""
    await storage.insert_leads([
        AgentLead(id="l1", property_id="p1", agent_id="a1"),
        AgentLead(id="l2", property_id="p1", agent_id="a2"),
        AgentLead(id="l3", property_id="p2", agent_id="a1"),
    ])

    assert await storage.delete_leads_for_property("p1") == 2
    assert list(storage.leads) == ["l3"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_messages_listed_in_time_order(storage, freeze_time_fixture):
    """Test property messages come back oldest first and mark read persists."""
    later = Message(id="m2", property_id="p1", sender_id="a", receiver_id="b", content="later", timestamp=utcnow())
    freeze_time_fixture.tick(-60)
    earlier = Message(id="m1", property_id="p1", sender_id="b", receiver_id="a", content="earlier", timestamp=utcnow())
    await storage.insert_message(later)
    await storage.insert_message(earlier)
    await storage.insert_message(later.model_copy(update={"id": "m3", "property_id": "p2"}))

    assert [m.id for m in await storage.list_messages("p1")] == ["m1", "m2"]
    assert (await storage.mark_message_read("m2")).is_read is True
    assert (await storage.get_message("m2")).is_read is True
    with pytest.raises(NotFoundError):
        await storage.mark_message_read("missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_support_messages_by_session(storage):
    """Test support lines are grouped by session."""
    for session_id in ("s1", "s2", "s1"):
        await storage.insert_support_message(SupportMessage(
            id=f"{session_id}-{len(storage.support_messages)}",
            session_id=session_id,
            sender_name="Jo",
            content="help",
            timestamp=utcnow(),
        ))

    assert [m.id for m in await storage.list_support_messages("s1")] == ["s1-0", "s1-2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_in_memory_blob_store():
    """Test saved bytes load back and unknown references are not found."""
    store = InMemoryBlobStore()

    reference = await store.save(b"%PDF")

    assert await store.load(reference) == b"%PDF"
    with pytest.raises(NotFoundError):
        await store.load("mem://missing")
