import pytest

from canlink.timebase import Resolution, Time


def test_millisecond_and_microsecond_constructors_agree():
    assert Time.from_milliseconds(1500) == Time.from_microseconds(1_500_000)


def test_float_seconds_round_to_microseconds():
    assert Time.from_seconds(1.5) == Time.from_milliseconds(1500)
    assert Time.from_seconds(2.5).to_seconds() == 2.5


def test_seconds_with_extra_microseconds():
    assert Time.from_seconds(2, 250).to_microseconds() == 2_000_250


def test_integer_seconds():
    assert Time.from_seconds(3) == Time.from_milliseconds(3000)


def test_arithmetic_round_trip():
    a = Time.from_microseconds(123_456)
    b = Time.from_microseconds(789)
    assert (a + b) - b == a
    assert a * 2.0 == a + a
    assert (a + a) / 2 == a


def test_to_milliseconds_truncates_toward_zero():
    assert Time.from_microseconds(-1500).to_milliseconds() == -1
    assert Time.from_microseconds(1999).to_milliseconds() == 1


def test_timeval_round_trip():
    for us in (0, 1, 999_999, 1_000_000, 1_234_567_890, -2_500_000):
        t = Time.from_microseconds(us)
        seconds, usecs = t.to_timeval()
        assert Time.from_seconds(seconds, usecs) == t
        assert abs(usecs) < 1_000_000


def test_str_groups_milli_and_micro():
    assert str(Time.from_microseconds(1_234_567)) == "1.234.567"


def test_is_null():
    assert Time().is_null()
    assert not Time.from_microseconds(1).is_null()


def test_ordering_and_sorting():
    times = [Time.from_milliseconds(v) for v in (5, 1, 3)]
    assert sorted(times) == [Time.from_milliseconds(v) for v in (1, 3, 5)]
    assert Time.from_milliseconds(1) < Time.from_milliseconds(2)
    assert Time.from_milliseconds(2) >= Time.from_milliseconds(2)


def test_now_is_monotone_enough():
    a = Time.now()
    b = Time.now()
    assert a <= b
    assert not a.is_null()


@pytest.mark.parametrize(
    "resolution", [Resolution.SECONDS, Resolution.MILLISECONDS, Resolution.MICROSECONDS]
)
def test_string_round_trip(resolution):
    micros = 7 if resolution == Resolution.MICROSECONDS else 0
    millis = 6 if resolution > Resolution.SECONDS else 0
    t = Time.from_time_values(2020, 1, 2, 3, 4, 5, millis, micros)
    assert Time.from_string(t.to_string(resolution), resolution) == t


def test_to_string_layout_matches_inputs():
    t = Time.from_time_values(2020, 1, 2, 3, 4, 5, 6, 7)
    assert t.to_string() == "20200102-03:04:05:006007"
    assert t.to_string(Resolution.MILLISECONDS) == "20200102-03:04:05:006"
    assert t.to_string(Resolution.SECONDS) == "20200102-03:04:05"


def test_millisecond_resolution_reads_first_three_digits():
    parsed = Time.from_string("20200102-03:04:05:123456", Resolution.MILLISECONDS)
    assert parsed == Time.from_time_values(2020, 1, 2, 3, 4, 5, 123, 0)


def test_from_string_rejects_short_fraction_for_microseconds():
    with pytest.raises(ValueError):
        Time.from_string("20200102-03:04:05:123", Resolution.MICROSECONDS)


def test_from_string_rejects_bad_fraction_length():
    with pytest.raises(ValueError):
        Time.from_string("20200102-03:04:05:1234", Resolution.MILLISECONDS)


def test_from_string_rejects_mismatched_format():
    with pytest.raises(ValueError):
        Time.from_string("not a time", Resolution.SECONDS)