"""
Device specifications and the DeviceProfile records built from them.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import TYPE_CHECKING, List, Optional

from .benchmarks import BenchmarkCatalog, BenchmarkSample, DEFAULT_MODEL_SIZE
from .config import BYTES_PER_GB

if TYPE_CHECKING:
    from .efficiency import EfficiencyRating

GPU_SPECS = {
    # Consumer Ada Lovelace
    "rtx-4090": {
        "name": "NVIDIA GeForce RTX 4090",
        "vendor": "nvidia",
        "architecture": "Ada Lovelace",
        "vram_gb": 24,
        "fp16_tflops": 165.2,
        "memory_bandwidth_gbps": 1008,
        "tdp_watts": 450,
        "price_usd": 1699,
        "msrp_usd": 1599,
        "availability": "available",
        "data_source": "manufacturer_official",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    "rtx-4080": {
        "name": "NVIDIA GeForce RTX 4080",
        "vendor": "nvidia",
        "architecture": "Ada Lovelace",
        "vram_gb": 16,
        "fp16_tflops": 121.8,
        "memory_bandwidth_gbps": 717,
        "tdp_watts": 320,
        "price_usd": 1199,
        "msrp_usd": 1199,
        "availability": "available",
        "data_source": "manufacturer_official",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    # Consumer Ampere
    "rtx-3090": {
        "name": "NVIDIA GeForce RTX 3090",
        "vendor": "nvidia",
        "architecture": "Ampere",
        "vram_gb": 24,
        "fp16_tflops": 71,
        "memory_bandwidth_gbps": 936,
        "tdp_watts": 350,
        "price_usd": 999,
        "msrp_usd": 1499,
        "availability": "limited",
        "data_source": "third_party_verified",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    # Datacenter Ampere
    "a100-40gb": {
        "name": "NVIDIA A100 40GB",
        "vendor": "nvidia",
        "architecture": "Ampere",
        "vram_gb": 40,
        "fp16_tflops": 312,
        "memory_bandwidth_gbps": 1555,
        "tdp_watts": 400,
        "price_usd": 10000,
        "msrp_usd": 10000,
        "availability": "limited",
        "data_source": "manufacturer_official",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    "a100-80gb": {
        "name": "NVIDIA A100 80GB",
        "vendor": "nvidia",
        "architecture": "Ampere",
        "vram_gb": 80,
        "fp16_tflops": 312,
        "memory_bandwidth_gbps": 2039,
        "tdp_watts": 400,
        "price_usd": 15000,
        "msrp_usd": 15000,
        "availability": "available",
        "data_source": "manufacturer_official",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    # Datacenter Hopper
    "h100": {
        "name": "NVIDIA H100 80GB",
        "vendor": "nvidia",
        "architecture": "Hopper",
        "vram_gb": 80,
        "fp16_tflops": 989,
        "memory_bandwidth_gbps": 3350,
        "tdp_watts": 700,
        "price_usd": 25000,
        "msrp_usd": 25000,
        "availability": "limited",
        "data_source": "manufacturer_official",
        "verified": True,
        "last_updated": "2024-01-15",
        "price_updated": "2024-01-15",
    },
    # Datacenter Volta
    "v100": {
        "name": "NVIDIA V100 32GB",
        "vendor": "nvidia",
        "architecture": "Volta",
        "vram_gb": 32,
        "fp16_tflops": 125,
        "memory_bandwidth_gbps": 900,
        "tdp_watts": 300,
        "price_usd": 8000,
        "msrp_usd": 8000,
        "availability": "out_of_stock",
        "data_source": "estimated",
        "verified": False,
        "last_updated": "2023-06-01",
        "price_updated": "2023-06-01",
    },
}


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


@dataclass
class DeviceProfile:
    """A candidate device: specs, price, benchmark samples and (optionally) a rating."""
    device_id: str
    name: str
    vendor: str
    architecture: str
    memory_gb: float
    memory_bandwidth_gbps: float
    fp16_tflops: float
    tdp_watts: float
    price_usd: float
    msrp_usd: Optional[float] = None
    availability: str = "available"  # available / limited / out_of_stock
    data_source: str = "manufacturer_official"
    verified: bool = True
    last_updated: Optional[date] = None
    price_updated: Optional[date] = None
    samples: List[BenchmarkSample] = field(default_factory=list)
    rating: Optional["EfficiencyRating"] = None

    @property
    def memory_bytes(self) -> float:
        return self.memory_gb * BYTES_PER_GB

    def primary_sample(self) -> Optional[BenchmarkSample]:
        """Sample closest to the 7B reference test, most credible first."""
        if not self.samples:
            return None
        return min(
            self.samples,
            key=lambda s: (abs(s.model_size_billions - DEFAULT_MODEL_SIZE), -s.credibility, s.test_name),
        )

    def with_rating(self, rating: "EfficiencyRating") -> "DeviceProfile":
        return replace(self, rating=rating)

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "vendor": self.vendor,
            "architecture": self.architecture,
            "memory_gb": self.memory_gb,
            "memory_bandwidth_gbps": self.memory_bandwidth_gbps,
            "fp16_tflops": self.fp16_tflops,
            "tdp_watts": self.tdp_watts,
            "price_usd": self.price_usd,
            "availability": self.availability,
            "samples": len(self.samples),
        }


def get_gpu_spec(device_id: str) -> dict:
    """Get spec for a device id, with partial matching ('4090' -> 'rtx-4090')."""
    key = device_id.lower().strip()
    if key in GPU_SPECS:
        return GPU_SPECS[key]
    for spec_id, spec in GPU_SPECS.items():
        if key in spec_id or key in spec["name"].lower():
            return spec
    return {}


def profile_from_spec(device_id: str, spec: dict, samples: List[BenchmarkSample] = None) -> DeviceProfile:
    return DeviceProfile(
        device_id=device_id,
        name=spec["name"],
        vendor=spec.get("vendor", "nvidia"),
        architecture=spec.get("architecture", ""),
        memory_gb=float(spec["vram_gb"]),
        memory_bandwidth_gbps=float(spec["memory_bandwidth_gbps"]),
        fp16_tflops=float(spec["fp16_tflops"]),
        tdp_watts=float(spec["tdp_watts"]),
        price_usd=float(spec["price_usd"]),
        msrp_usd=spec.get("msrp_usd"),
        availability=spec.get("availability", "available"),
        data_source=spec.get("data_source", "estimated"),
        verified=spec.get("verified", False),
        last_updated=_parse_date(spec.get("last_updated")),
        price_updated=_parse_date(spec.get("price_updated")),
        samples=list(samples or []),
    )


def build_device_profiles(catalog: BenchmarkCatalog = None, specs: dict = None) -> List[DeviceProfile]:
    """One DeviceProfile per spec entry with its catalog samples attached."""
    specs = GPU_SPECS if specs is None else specs
    return [
        profile_from_spec(device_id, spec, catalog.for_device(device_id) if catalog else [])
        for device_id, spec in specs.items()
    ]
