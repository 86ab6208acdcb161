"""Tests for Outcome and the outcome decorator."""

import pytest

from src.services.outcome import Outcome, outcome
from src.utils.errors import BrbcRequiredError, NotFoundError, StorageError


@outcome
async def _raises(error):
    raise error


@outcome
async def _returns(value):
    return value


@pytest.mark.unit
@pytest.mark.asyncio
async def test_taxonomy_error_becomes_failure():
    """Test HomeBridgeError subclasses are returned, not raised."""
    result = await _raises(NotFoundError("gone"))

    assert not result.ok
    assert result.kind == "not_found"
    assert result.events == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_brbc_required_is_forbidden_with_details():
    """Test BrbcRequiredError carries the agent to sign with."""
    result = await _raises(BrbcRequiredError("agent_1"))

    assert result.kind == "forbidden"
    assert result.error.to_dict()["requires_brbc"] is True
    assert result.error.to_dict()["agent_id"] == "agent_1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_storage_error_propagates():
    """Test storage failures are not converted."""
    with pytest.raises(StorageError):
        await _raises(StorageError("db down"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_other_exceptions_propagate():
    """Test errors outside the taxonomy are not converted."""
    with pytest.raises(KeyError):
        await _raises(KeyError("bug"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_plain_value_is_wrapped():
    """Test non-Outcome return values become successes."""
    result = await _returns(42)

    assert result.ok
    assert result.unwrap() == 42


@pytest.mark.unit
@pytest.mark.asyncio
async def test_outcome_value_passes_through():
    """Test an Outcome return value is not double wrapped."""
    inner = Outcome.success("x")

    assert await _returns(inner) is inner


@pytest.mark.unit
def test_unwrap_raises_error():
    """Test unwrap re-raises the failure."""
    with pytest.raises(NotFoundError):
        Outcome.failure(NotFoundError("gone")).unwrap()
