"""Tests for the host metrics sampler"""

from wg_gateway.system_metrics import StaticSampler, SystemSampler


def test_first_sample_has_no_speed():
    sample = SystemSampler().sample()
    assert 0.0 <= sample.cpu_load <= 100.0
    assert sample.network_speed == 0.0


def test_second_sample_non_negative():
    sampler = SystemSampler()
    sampler.sample()
    assert sampler.sample().network_speed >= 0.0


def test_missing_interface_reads_zero():
    sampler = SystemSampler("no-such-iface0")
    sampler.sample()
    assert sampler.sample().network_speed == 0.0


def test_static():
    sample = StaticSampler(12.5, 1000).sample()
    assert sample.cpu_load == 12.5
    assert sample.network_speed == 1000
