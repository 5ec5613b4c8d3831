"""
Container signature sniffing for WebM/Matroska recorder fragments.

MediaRecorder emits one fragment per timeslice. Only the first fragment of a
recording carries the EBML header; later fragments start mid-stream (usually at
a Cluster or a block element), and some recorders split the first fragment so
that the header's 0x1A lead byte ends up in the previous, discarded slice.

Classification rules, in priority order:
1. full EBML magic anywhere in the slice     → FULL_HEADER at that offset
2. slice starts with the magic minus 0x1A    → PARTIAL_HEADER_MISSING_LEAD_BYTE
3. first byte is a known element lead byte   → STRUCTURAL_ELEMENT
4. anything else                             → NO_RECOGNIZED_STRUCTURE
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

EBML_MAGIC = b'\x1a\x45\xdf\xa3'
EBML_LEAD_BYTE = EBML_MAGIC[:1]
EBML_PARTIAL = EBML_MAGIC[1:]

# Complete empty EBML header declaring a WebM document:
# EBMLVersion=1, EBMLReadVersion=1, EBMLMaxIDLength=4, EBMLMaxSizeLength=8,
# DocType="webm", DocTypeVersion=4, DocTypeReadVersion=2 (31-byte body)
MINIMAL_EBML_HEADER = (
    EBML_MAGIC + b'\x9f'
    + b'\x42\x86\x81\x01'
    + b'\x42\xf7\x81\x01'
    + b'\x42\xf2\x81\x04'
    + b'\x42\xf3\x81\x08'
    + b'\x42\x82\x84webm'
    + b'\x42\x87\x81\x04'
    + b'\x42\x85\x81\x02'
)


class ContainerSignature(Enum):
    """Classification of a fragment's leading bytes"""
    FULL_HEADER = "full_header"
    PARTIAL_HEADER_MISSING_LEAD_BYTE = "partial_header_missing_lead_byte"
    STRUCTURAL_ELEMENT = "structural_element"
    NO_RECOGNIZED_STRUCTURE = "no_recognized_structure"


class StructuralKind(Enum):
    """Element family matched by a fragment's first byte"""
    EBML_LEAD = "ebml_lead"              # 0x1A without the rest of the magic
    EBML_TAIL = "ebml_tail"              # 0x45, header missing its lead byte
    CLUSTER = "cluster"                  # 0x1F, Cluster ID 1F 43 B6 75
    CLUSTER_TAIL = "cluster_tail"        # 0x43, Cluster ID split after its lead byte
    ELEMENT_ID = "element_id"            # 0x80-0xFE, one-byte element IDs (SimpleBlock, BlockGroup, ...)


STRUCTURAL_LEAD_BYTES = {
    0x1a: StructuralKind.EBML_LEAD,
    0x45: StructuralKind.EBML_TAIL,
    0x1f: StructuralKind.CLUSTER,
    0x43: StructuralKind.CLUSTER_TAIL,
}


@dataclass(frozen=True)
class SniffResult:
    signature: ContainerSignature
    offset: int = 0
    kind: Optional[StructuralKind] = None

    @property
    def has_structure(self) -> bool:
        return self.signature is not ContainerSignature.NO_RECOGNIZED_STRUCTURE


def structural_kind(first_byte: int) -> Optional[StructuralKind]:
    """Map a fragment's first byte to the element family it can start, if any."""
    kind = STRUCTURAL_LEAD_BYTES.get(first_byte)
    if kind is not None:
        return kind
    if 0x80 <= first_byte <= 0xfe:
        return StructuralKind.ELEMENT_ID
    return None


def sniff(data: bytes) -> SniffResult:
    """
    Classify a byte slice. Pure; never raises.

    Args:
        data: Fragment bytes (may be empty)

    Returns:
        SniffResult with signature, offset (header position for FULL_HEADER)
        and element kind (for STRUCTURAL_ELEMENT)
    """
    offset = data.find(EBML_MAGIC)
    if offset != -1:
        return SniffResult(ContainerSignature.FULL_HEADER, offset)

    if data.startswith(EBML_PARTIAL):
        return SniffResult(ContainerSignature.PARTIAL_HEADER_MISSING_LEAD_BYTE, 0)

    if data:
        kind = structural_kind(data[0])
        if kind is not None:
            return SniffResult(ContainerSignature.STRUCTURAL_ELEMENT, 0, kind)

    return SniffResult(ContainerSignature.NO_RECOGNIZED_STRUCTURE)


def has_structural_evidence(data: bytes) -> bool:
    """True when the slice carries a header, a repairable header or a known element lead byte."""
    return sniff(data).has_structure
