"""
FHIR Bundle Assembler

Collects resource dicts into a FHIR Bundle, validates the result with
`fhir.resources`, and renders it to the exact JSON bytes offered for
download.
"""
from typing import List, Dict, Any, Optional, Union
from dataclasses import dataclass
import copy
import json

from fhir.resources.bundle import Bundle


@dataclass(frozen=True)
class SynthesizedBundle:
    """
    An assembled Bundle in its JSON form.

    Never mutated after creation; `to_dict()` hands out a copy.
    """
    data: Dict[str, Any]

    @property
    def type(self) -> str:
        return self.data["type"]

    @property
    def timestamp(self) -> Optional[str]:
        return self.data.get("timestamp")

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.data.get("entry", []))

    @property
    def resource_count(self) -> int:
        """Number of resources in the bundle."""
        return len(self.data.get("entry", []))

    def get_resource_types(self) -> List[str]:
        """Get list of resource types in the bundle, in entry order."""
        return [entry["resource"]["resourceType"] for entry in self.data.get("entry", [])]

    def resource_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for resource_type in self.get_resource_types():
            counts[resource_type] = counts.get(resource_type, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    def to_fhir(self) -> Bundle:
        """Validated `fhir.resources` Bundle model."""
        return Bundle(**self.to_dict())


def render_bundle(bundle: Union[SynthesizedBundle, Dict[str, Any]]) -> bytes:
    """
    Serialize a bundle to the downloadable artifact.

    History replay goes through this same function, so a stored bundle
    renders to the same bytes as the original download.
    """
    data = bundle.data if isinstance(bundle, SynthesizedBundle) else bundle
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def parse_bundle(raw: Union[bytes, str]) -> SynthesizedBundle:
    """Parse a rendered artifact back into a SynthesizedBundle."""
    data = json.loads(raw)
    if not isinstance(data, dict) or data.get("resourceType") != "Bundle":
        raise ValueError("Not a FHIR Bundle document")
    return SynthesizedBundle(data=data)


class FHIRBundler:
    """
    Assembles FHIR resources into a Bundle.

    Entries are kept in insertion order. For transaction bundles every
    entry carries a request (method + url); collection bundles carry a
    fullUrl instead.
    """

    def __init__(self, bundle_type: str = "transaction"):
        """Initialize the bundler."""
        self.bundle_type = bundle_type
        self.entries: List[Dict[str, Any]] = []

    def add_resource(
        self,
        resource: Dict[str, Any],
        method: str = "POST",
        url: str = None,
        full_url: str = None
    ) -> None:
        """
        Add a resource to the bundle.

        Args:
            resource: FHIR resource in JSON form
            method: Request method for transaction bundles
            url: Request URL (defaults to the resource type)
            full_url: Absolute entry URL for collection bundles
        """
        entry: Dict[str, Any] = {}
        if full_url:
            entry["fullUrl"] = full_url
        entry["resource"] = copy.deepcopy(resource)
        if self.bundle_type == "transaction":
            entry["request"] = {"method": method, "url": url or resource["resourceType"]}
        self.entries.append(entry)

    def build(self, timestamp: str, **extra: Any) -> SynthesizedBundle:
        """
        Build and validate the final Bundle.

        Args:
            timestamp: Bundle timestamp (FHIR instant)
            extra: Additional top-level Bundle fields (id, meta, total)

        Returns:
            SynthesizedBundle holding the JSON form
        """
        data: Dict[str, Any] = {"resourceType": "Bundle"}
        for key in ("id", "meta"):
            if key in extra:
                data[key] = extra.pop(key)
        data["type"] = self.bundle_type
        data["timestamp"] = timestamp
        data.update(extra)
        data["entry"] = copy.deepcopy(self.entries)

        bundle = SynthesizedBundle(data=data)
        # Raises pydantic.ValidationError on a non-conformant resource
        bundle.to_fhir()
        return bundle
