"""Monitor and rep notification decoding."""

import pytest

from cablectrl.errors import MalformedPayloadError
from cablectrl.telemetry import (
    RepCounters,
    TelemetryParser,
    counter_delta,
    parse_monitor,
    parse_rep_notification,
)
from fakes import monitor_payload, rep_payload


@pytest.mark.parametrize(
    "prev, next_value, expected",
    [
        (65534, 2, 4),
        (5, 5, 0),
        (0, 0xFFFF, 0xFFFF),
        (10, 13, 3),
        (0xFFFF, 0, 1),
    ],
)
def test_counter_delta(prev, next_value, expected):
    assert counter_delta(prev, next_value) == expected


def test_parse_monitor_fields():
    data = monitor_payload(pos_a=420, pos_b=415, load_a=2550, load_b=2450, ticks=0x00012345)
    sample = parse_monitor(data, timestamp=12.5)

    assert sample.timestamp == 12.5
    assert sample.ticks == 0x00012345
    assert sample.pos_a == 420
    assert sample.pos_b == 415
    assert sample.load_a == pytest.approx(25.5)
    assert sample.load_b == pytest.approx(24.5)
    assert sample.total_load == pytest.approx(50.0)


def test_position_spike_replaced_by_last_value():
    sample = parse_monitor(monitor_payload(pos_a=60000, pos_b=300), last_pos_a=812, last_pos_b=290)
    assert sample.pos_a == 812
    assert sample.pos_b == 300


def test_ceiling_itself_is_accepted():
    assert parse_monitor(monitor_payload(pos_a=50000)).pos_a == 50000


def test_short_monitor_payload_rejected():
    with pytest.raises(MalformedPayloadError):
        parse_monitor(bytes(15))


def test_longer_monitor_payload_accepted():
    sample = parse_monitor(monitor_payload(pos_a=7) + b"\x00\x00")
    assert sample.pos_a == 7


def test_parse_rep_notification():
    assert parse_rep_notification(rep_payload(top=7, complete=6, middle=3)) == RepCounters(7, 3, 6)
    with pytest.raises(MalformedPayloadError):
        parse_rep_notification(bytes(5))


def test_parser_tracks_last_accepted_positions():
    parser = TelemetryParser()
    parser.parse_monitor(monitor_payload(pos_a=500, pos_b=510))
    sample = parser.parse_monitor(monitor_payload(pos_a=65000, pos_b=65000))

    assert (sample.pos_a, sample.pos_b) == (500, 510)
    assert (parser.last_pos_a, parser.last_pos_b) == (500, 510)

    parser.reset()
    assert parser.parse_monitor(monitor_payload(pos_a=65000)).pos_a == 0
