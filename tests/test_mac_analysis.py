"""Tests for MAC address analysis and vendor lookup."""

import pytest

from lanlens._types import DeviceType, SignalSource
from lanlens.mac_analysis import (
    OUIAge,
    VendorConfidence,
    analyze_mac,
    signals_from_mac_analysis,
)
from lanlens.vendor import lookup_vendor, normalize_mac, oui_prefix


class TestNormalizeMac:
    """Tests for MAC normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("aa:bb:cc:dd:ee:ff", "AA:BB:CC:DD:EE:FF"),
        ("AA-BB-CC-DD-EE-FF", "AA:BB:CC:DD:EE:FF"),
        ("a:b:c:d:e:f", "0A:0B:0C:0D:0E:0F"),
        ("aabbccddeeff", "AA:BB:CC:DD:EE:FF"),
        (" 00:11:32:aa:bb:cc ", "00:11:32:AA:BB:CC"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_mac(raw) == expected

    def test_oui_prefix(self):
        assert oui_prefix("b8:e9:37:01:02:03") == "B8:E9:37"


class TestVendorLookup:
    """Tests for the OUI table."""

    def test_known_vendor(self):
        assert lookup_vendor("B8:E9:37:01:02:03") == "Sonos"

    def test_hue_before_philips(self):
        """Philips Hue bridges have their own OUI."""
        assert lookup_vendor("00:17:88:01:02:03") == "Philips Hue"

    def test_unknown_vendor(self):
        assert lookup_vendor("02:00:00:00:00:01") is None


class TestAnalyzeMac:
    """Tests for analyze_mac."""

    def test_randomized_address(self):
        """Locally administered unicast addresses are treated as randomized."""
        analysis = analyze_mac("DA:A1:19:00:00:01")

        assert analysis.is_locally_administered is True
        assert analysis.is_randomized is True
        assert analysis.vendor_confidence == VendorConfidence.RANDOMIZED

    def test_multicast_not_randomized(self):
        analysis = analyze_mac("03:00:00:00:00:01")
        assert analysis.is_locally_administered is True
        assert analysis.is_randomized is False

    def test_virtual_machine(self):
        analysis = analyze_mac("00:50:56:12:34:56")
        assert analysis.is_virtual_machine is True
        assert analysis.vendor == "VMware"

    def test_specialized_vendor(self):
        analysis = analyze_mac("B8:E9:37:01:02:03")

        assert analysis.vendor == "Sonos"
        assert analysis.vendor_specialization == DeviceType.SPEAKER
        assert analysis.vendor_confidence == VendorConfidence.MEDIUM
        assert analysis.vendor_categories == [DeviceType.SPEAKER]

    def test_explicit_vendor_wins(self):
        analysis = analyze_mac("02:00:00:00:00:01", vendor="3Com Corporation")
        assert analysis.age_estimate == OUIAge.LEGACY


class TestMacSignals:
    """Tests for signals_from_mac_analysis."""

    def test_randomized_suggests_phone(self):
        signals = signals_from_mac_analysis(analyze_mac("AA:BB:CC:11:22:33"))

        assert len(signals) == 1
        assert signals[0].source == SignalSource.MAC_ANALYSIS
        assert signals[0].suggested_type == DeviceType.PHONE
        assert signals[0].confidence == pytest.approx(0.60)

    def test_vm_suggests_computer(self):
        signals = signals_from_mac_analysis(analyze_mac("08:00:27:00:00:01"))
        assert [(s.suggested_type, s.confidence) for s in signals] == [(DeviceType.COMPUTER, 0.85)]

    def test_medium_confidence_specialization(self):
        signals = signals_from_mac_analysis(analyze_mac("B8:E9:37:01:02:03"))
        assert [(s.suggested_type, s.confidence) for s in signals] == [(DeviceType.SPEAKER, 0.55)]

    def test_unknown_vendor_no_signals(self):
        assert signals_from_mac_analysis(analyze_mac("00:00:01:00:00:01")) == []
