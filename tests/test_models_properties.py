"""
Property-based tests for data models.
Tests validation and snapshot ordering properties using Hypothesis.
"""

import pytest
from hypothesis import given, settings, strategies as st
from pydantic import ValidationError

from models import HookEvent, Probe, ProbeStats, is_ip_address, snapshot_to_list


# Hypothesis strategies for generating test data

@st.composite
def valid_ip_address(draw):
    """Generate valid IP addresses in the 192.0.2.0/24 documentation subnet."""
    last_octet = draw(st.integers(min_value=1, max_value=254))
    return f"192.0.2.{last_octet}"


loss_values = st.floats(min_value=0.0, max_value=100.0, allow_nan=False, allow_infinity=False)


@st.composite
def snapshot_strategy(draw):
    """Generate snapshots keyed by destination."""
    destinations = draw(st.sets(valid_ip_address(), max_size=10))
    return {
        dst: ProbeStats(destination=dst, loss=draw(loss_values))
        for dst in destinations
    }


# Property-based tests

@settings(max_examples=100)
@given(loss=loss_values)
def test_property_valid_loss_accepted(loss):
    """Any loss within [0, 100] is a valid measurement."""
    assert ProbeStats(destination="192.0.2.1", loss=loss).loss == loss


@settings(max_examples=100)
@given(loss=st.one_of(
    st.floats(max_value=-0.001, allow_nan=False, allow_infinity=False),
    st.floats(min_value=100.001, allow_nan=False, allow_infinity=False)
))
def test_property_out_of_range_loss_rejected(loss):
    """Loss outside [0, 100] never validates."""
    with pytest.raises(ValidationError):
        ProbeStats(destination="192.0.2.1", loss=loss)


@settings(max_examples=100)
@given(snapshot=snapshot_strategy())
def test_property_snapshot_list_sorted_and_complete(snapshot):
    """Flattening a snapshot keeps every entry, ordered by destination."""
    stats = snapshot_to_list(snapshot)

    assert [s.destination for s in stats] == sorted(snapshot)
    assert {s.destination: s for s in stats} == snapshot


@settings(max_examples=100)
@given(ip=valid_ip_address())
def test_property_literal_probes_are_resolved(ip):
    assert Probe(destination=ip, source=ip).is_resolved()


# Unit tests

def test_empty_source_is_unset():
    assert Probe(destination="192.0.2.1", source="  ").source is None


def test_empty_destination_rejected():
    with pytest.raises(ValidationError):
        Probe(destination="")


def test_hostname_probe_not_resolved():
    assert not Probe(destination="gateway.example").is_resolved()
    assert not Probe(destination="192.0.2.1", source="eth0").is_resolved()


def test_models_are_frozen():
    stats = ProbeStats(destination="192.0.2.1", loss=0.0)
    with pytest.raises(ValidationError):
        stats.loss = 50.0


@pytest.mark.parametrize("value, expected", [
    ("192.0.2.1", True),
    ("2001:db8::1", True),
    ("gateway.example", False),
    ("eth0", False),
    ("", False),
])
def test_is_ip_address(value, expected):
    assert is_ip_address(value) is expected


def test_hook_event_requires_positive_timestamp():
    with pytest.raises(ValidationError):
        HookEvent(event="shutdown", timestamp=0)
