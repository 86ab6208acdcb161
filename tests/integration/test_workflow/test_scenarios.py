"""End-to-end workflow scenarios through the HomeBridge container."""

import asyncio
import json
import pytest

from src.models.agent_lead import AgentLead, LeadStatus
from src.models.agreement import AgreementStatus
from src.models.property import PropertyDraft
from src.models.user import Actor
from src.models.viewing_request import ViewingStatus
from src.services.app import HomeBridge
from src.services.notifications import NotificationBroadcaster
from src.utils.ids import generate_id
from tests.utils.assertions import assert_ok, assert_refused, assert_single_claimed_lead, assert_wire_message
from tests.utils.factories import SIGNATURE, make_agent, make_brbc, make_property, make_window
from tests.utils.helpers import HangingConnection, RecordingConnection, YieldingStorage, seed


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scenario_a_no_agents(app, storage, buyer_actor):
    """Scenario A: no verified agents, creation still succeeds unassigned."""
    seed(storage, make_agent(verified=False))

    prop = assert_ok(await app.run(app.properties.create_property(
        buyer_actor, PropertyDraft(address="9 Quiet Ln", state="CA")
    )))

    assert prop.seller_id is None
    assert prop.agent_id is None
    assert storage.leads == {}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scenario_b_two_same_state_agents(app, storage, broadcaster, buyer_actor):
    """Scenario B: the first candidate is assigned, the second gets an available lead."""
    first = seed(storage, make_agent(state="CA"))
    second = seed(storage, make_agent(state="CA"))
    seed(storage, make_agent(state="NY"))
    first_conn, second_conn = RecordingConnection(), RecordingConnection()
    broadcaster.connect(first.id, first_conn)
    broadcaster.connect(second.id, second_conn)

    prop = assert_ok(await app.run(app.properties.create_property(
        buyer_actor, PropertyDraft(address="1 Bay St", state="CA")
    )))

    assert prop.agent_id == first.id
    assert_single_claimed_lead(storage, prop.id, first.id)
    statuses = {l.agent_id: l.status for l in storage.leads.values()}
    assert statuses[first.id] == LeadStatus.CLAIMED
    assert statuses[second.id] == LeadStatus.AVAILABLE
    assert_wire_message(first_conn.messages[-1], "agent_assigned", propertyId=prop.id)
    assert_wire_message(second_conn.messages[-1], "lead_available", propertyId=prop.id)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scenario_c_concurrent_claims(buyer):
    """Scenario C: interleaved claims leave exactly one winner who holds the property."""
    storage = YieldingStorage()
    app = HomeBridge.create(storage=storage)
    seed(storage, buyer)
    agent_a = seed(storage, make_agent())
    agent_b = seed(storage, make_agent())
    prop = seed(storage, make_property(buyer.id))
    lead_a, lead_b = await storage.insert_leads([
        AgentLead(id=generate_id(), property_id=prop.id, agent_id=agent_a.id),
        AgentLead(id=generate_id(), property_id=prop.id, agent_id=agent_b.id),
    ])

    results = await asyncio.gather(
        app.allocator.claim_lead(Actor.of(agent_a), lead_a.id),
        app.allocator.claim_lead(Actor.of(agent_b), lead_a.id),
        app.allocator.claim_lead(Actor.of(agent_b), lead_b.id),
    )

    assert [r.ok for r in results] == [True, False, False]
    assert results[1].kind == results[2].kind == "state_conflict"
    assert_single_claimed_lead(storage, prop.id, agent_a.id)
    assert storage.leads[lead_b.id].status == LeadStatus.AVAILABLE

    steps = [name for name, _ in storage.calls]
    # every claim had read its lead before any compare-and-swap ran
    assert steps[:3] == ["get_lead"] * 3
    assert steps.index("claim_lead_if_available") == 3
    assert storage.properties[prop.id].agent_id == agent_a.id


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scenario_d_disclosure_waits_for_pending_viewing(
    app, storage, buyer, seller, agent, buyer_actor, agent_actor, seller_actor
):
    """Scenario D: the seller's signature stops at signed_by_seller while a viewing is pending."""
    prop = seed(storage, make_property(buyer.id, agent_id=agent.id, seller_id=seller.id))
    brbc = make_brbc(buyer.id, agent.id)
    storage.agreements[brbc.id] = brbc
    assert_ok(await app.run(app.viewings.request_viewing(buyer_actor, prop.id, make_window())))

    disclosure = assert_ok(await app.run(app.agreements.create_agency_disclosure(buyer_actor, prop.id)))
    signed = assert_ok(await app.run(app.agreements.sign(buyer_actor, disclosure.id, SIGNATURE)))
    assert signed.status == AgreementStatus.SIGNED_BY_BUYER
    signed = assert_ok(await app.run(app.agreements.sign(agent_actor, disclosure.id, SIGNATURE)))
    assert signed.status == AgreementStatus.PENDING
    signed = assert_ok(await app.run(app.agreements.sign(seller_actor, disclosure.id, SIGNATURE)))

    assert signed.status == AgreementStatus.SIGNED_BY_SELLER
    assert signed.document_ref is not None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scenario_e_viewing_requires_brbc(app, storage, buyer, seller, agent, buyer_actor):
    """Scenario E: no BRBC with the assigned agent refuses the viewing."""
    prop = seed(storage, make_property(buyer.id, agent_id=agent.id, seller_id=seller.id))

    error = assert_refused(
        await app.run(app.viewings.request_viewing(buyer_actor, prop.id, make_window())), "forbidden"
    )

    assert error.to_dict()["requires_brbc"] is True
    assert error.to_dict()["agent_id"] == agent.id
    assert storage.viewing_requests == {}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_purchase_workflow(app, storage, broadcaster, buyer, seller, buyer_actor, seller_actor):
    """Property creation through a completed viewing with a fully signed disclosure."""
    agent = seed(storage, make_agent(state="CA"))
    agent_actor = Actor.of(agent)
    buyer_conn = RecordingConnection()
    broadcaster.connect(buyer.id, buyer_conn)

    prop = assert_ok(await app.run(app.properties.create_property(
        buyer_actor, PropertyDraft(address="77 Harbor Rd", state="CA", seller_id=seller.id)
    )))
    assert prop.agent_id == agent.id

    brbc = assert_ok(await app.run(app.agreements.sign_global_brbc(buyer_actor, agent.id, SIGNATURE)))
    assert assert_ok(await app.run(app.agreements.sign(agent_actor, brbc.id, SIGNATURE))).is_completed

    booking = assert_ok(await app.run(app.viewings.request_viewing(buyer_actor, prop.id, make_window())))
    token = booking.public_url.rsplit("/", 1)[1]
    answered = assert_ok(await app.run(app.viewings.respond_via_token(token, ViewingStatus.ACCEPTED)))
    assert answered.status == ViewingStatus.PENDING
    accepted = assert_ok(await app.run(app.viewings.respond(agent_actor, booking.request.id, ViewingStatus.ACCEPTED)))
    assert accepted.status == ViewingStatus.ACCEPTED

    disclosure = assert_ok(await app.run(app.agreements.create_agency_disclosure(agent_actor, prop.id, buyer.id)))
    for actor in (buyer_actor, agent_actor, seller_actor):
        signed = assert_ok(await app.run(app.agreements.sign(actor, disclosure.id, SIGNATURE)))
    assert signed.status == AgreementStatus.COMPLETED

    completed = assert_ok(await app.run(app.viewings.complete(agent_actor, booking.request.id)))
    assert completed.status == ViewingStatus.COMPLETED

    actions = [json.loads(m)["payload"]["action"] for m in buyer_conn.messages]
    assert "property_created" in actions
    assert "viewing_accepted" in actions
    assert "viewing_completed" in actions
    history = [e.activity for e in await app.ledger.history(prop.id)]
    assert history[0] == "Property created"
    assert "Viewing completed" in history


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stalled_recipient_does_not_block_action(storage, buyer, seller, agent, buyer_actor):
    """Test a viewing request completes and reaches others while one recipient's socket hangs."""
    broadcaster = NotificationBroadcaster(stale_seconds=60, send_timeout=0.05)
    app = HomeBridge.create(storage=storage, broadcaster=broadcaster)
    prop = seed(storage, make_property(buyer.id, agent_id=agent.id, seller_id=seller.id))
    brbc = make_brbc(buyer.id, agent.id)
    storage.agreements[brbc.id] = brbc
    agent_conn = RecordingConnection()
    broadcaster.connect(seller.id, HangingConnection())
    broadcaster.connect(agent.id, agent_conn)

    result = await asyncio.wait_for(
        app.run(app.viewings.request_viewing(buyer_actor, prop.id, make_window())), timeout=2
    )

    assert_ok(result)
    assert not broadcaster.is_connected(seller.id)
    assert_wire_message(agent_conn.messages[0], "viewing_requested", propertyId=prop.id)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_property_chat_and_support(app, storage, broadcaster, buyer, agent, admin, buyer_actor):
    """Test a chat message reaches both parties and a support line reaches the admin."""
    prop = seed(storage, make_property(buyer.id, agent_id=agent.id))
    buyer_conn, agent_conn, admin_conn = RecordingConnection(), RecordingConnection(), RecordingConnection()
    broadcaster.connect(buyer.id, buyer_conn)
    broadcaster.connect(agent.id, agent_conn)
    broadcaster.connect(admin.id, admin_conn, is_admin=True)

    message = assert_ok(await app.run(app.messages.send(buyer_actor, prop.id, agent.id, "When can we tour?")))
    assert_wire_message(agent_conn.messages[0], "message_sent", messageId=message.id, message="When can we tour?")
    assert len(buyer_conn.messages) == 1
    assert admin_conn.messages == []

    assert_ok(await app.run(app.messages.mark_read(Actor.of(agent), message.id)))
    assert storage.messages[message.id].is_read is True

    assert_ok(await app.run(app.messages.send_support("sess-9", "Jo", "Where is my lead?", actor=buyer_actor)))
    assert_wire_message(admin_conn.messages[0], "support_message", sessionId="sess-9")
