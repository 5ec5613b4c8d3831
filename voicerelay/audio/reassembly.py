"""
Fragment reassembly and container repair.

Turns one batch of recorder fragments into a single buffer PyAV can parse:
the header-bearing fragment is moved to the front, garbage before the header is
trimmed, a header missing its lead byte is restored, and a minimal EBML header
is synthesized when the batch only holds mid-stream fragments.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from voicerelay.audio.chunks import Chunk
from voicerelay.audio.sniffer import (
    EBML_LEAD_BYTE,
    EBML_MAGIC,
    EBML_PARTIAL,
    MINIMAL_EBML_HEADER,
    ContainerSignature,
    has_structural_evidence,
    sniff,
)
from voicerelay.config.logging_config import get_logger
from voicerelay.types.pipeline_errors import EmptyBatchError, NoContainerStructureError

logger = get_logger(__name__)


class HeaderConfidence(Enum):
    """How much the reassembled buffer's header can be trusted"""
    VERIFIED = "verified"      # real header found and placed first
    REPAIRED = "repaired"      # lead byte restored
    UNVERIFIED = "unverified"  # header synthesized, best effort


@dataclass(frozen=True)
class ReassembledStream:
    """
    One contiguous container buffer built from a batch.

    Attributes:
        data: Container bytes, header first
        confidence: Header confidence level
        chunk_count: Number of fragments concatenated
        header_chunk_index: Arrival index of the header fragment (None when synthesized)
        trimmed_bytes: Leading bytes removed before the header
    """
    data: bytes
    confidence: HeaderConfidence
    chunk_count: int
    header_chunk_index: Optional[int] = None
    trimmed_bytes: int = 0


def _header_first(fragments: List[bytes], index: int, head: bytes) -> List[bytes]:
    """Header fragment, then fragments that arrived after it, then those that arrived before."""
    return [head] + fragments[index + 1:] + fragments[:index]


class FragmentReassembler:
    """
    Rebuilds a parseable WebM buffer from arbitrarily sliced fragments.

    Input chunks must already be filtered for minimum size (see
    filter_valid_chunks); the reassembler keeps every chunk it is given.
    """

    def reassemble(self, chunks: Sequence[Chunk]) -> ReassembledStream:
        """
        Reassemble fragments into one buffer.

        Args:
            chunks: Filtered chunks in arrival order

        Returns:
            ReassembledStream tagged VERIFIED, REPAIRED or UNVERIFIED

        Raises:
            EmptyBatchError: No chunks
            NoContainerStructureError: No chunk shows any container structure
        """
        if not chunks:
            raise EmptyBatchError("no chunks to reassemble")

        fragments = [chunk.data for chunk in chunks]
        logger.debug(
            f"🔍 [REASSEMBLE] {len(fragments)} fragment(s), sizes={[len(f) for f in fragments]}, "
            f"first bytes={fragments[0][:20].hex()}"
        )

        ordered: Optional[List[bytes]] = None
        confidence = HeaderConfidence.UNVERIFIED
        header_index: Optional[int] = None
        trimmed = 0

        # 1. Complete EBML header anywhere
        for index, fragment in enumerate(fragments):
            result = sniff(fragment)
            if result.signature is ContainerSignature.FULL_HEADER:
                header_index = index
                trimmed = result.offset
                if trimmed:
                    logger.warning(f"⚠️ [REASSEMBLE] Trimming {trimmed} bytes before EBML header in fragment {index}")
                ordered = _header_first(fragments, index, fragment[trimmed:])
                confidence = HeaderConfidence.VERIFIED
                logger.info(f"✅ [REASSEMBLE] Found EBML header in fragment {index} at offset {trimmed}")
                break

        # 2. Header missing its lead byte; when this is fragment 0 the order stays as it arrived
        if ordered is None:
            for index, fragment in enumerate(fragments):
                if sniff(fragment).signature is ContainerSignature.PARTIAL_HEADER_MISSING_LEAD_BYTE:
                    header_index = index
                    ordered = _header_first(fragments, index, EBML_LEAD_BYTE + fragment)
                    confidence = HeaderConfidence.REPAIRED
                    logger.info(f"🔧 [REASSEMBLE] Fragment {index} has EBML header missing 0x1a, restoring it")
                    break

        # 3. Mid-stream fragments only: synthesize a header if anything looks like Matroska
        if ordered is None:
            logger.warning(
                f"⚠️ [REASSEMBLE] No EBML header in any fragment "
                f"(sizes: {', '.join(str(len(f)) for f in fragments)} bytes)"
            )
            if not any(has_structural_evidence(fragment) for fragment in fragments):
                raise NoContainerStructureError(
                    f"{len(fragments)} fragment(s) carry no WebM structure; "
                    f"cannot decode without an initialization segment"
                )
            logger.info(f"🔧 [REASSEMBLE] Prepending minimal EBML header ({len(MINIMAL_EBML_HEADER)} bytes)")
            ordered = [MINIMAL_EBML_HEADER] + fragments
            confidence = HeaderConfidence.UNVERIFIED

        buffer = b''.join(ordered)
        buffer, extra_trim = self._check_final_buffer(buffer)
        trimmed += extra_trim

        logger.info(
            f"🗂️ [REASSEMBLE] Concatenated {len(fragments)} fragment(s) into {len(buffer)} bytes "
            f"(confidence={confidence.value})"
        )

        return ReassembledStream(
            data=buffer,
            confidence=confidence,
            chunk_count=len(fragments),
            header_chunk_index=header_index,
            trimmed_bytes=trimmed,
        )

    @staticmethod
    def _check_final_buffer(buffer: bytes) -> tuple[bytes, int]:
        """
        Re-check the concatenated buffer for a misplaced or truncated header.

        Returns:
            (buffer, bytes trimmed)
        """
        offset = buffer.find(EBML_MAGIC)
        if offset > 0:
            logger.warning(f"⚠️ [REASSEMBLE] Trimming {offset} bytes before EBML header in final buffer")
            return buffer[offset:], offset
        if offset == -1:
            if buffer.startswith(EBML_PARTIAL):
                logger.info("🔧 [REASSEMBLE] Fixing partial EBML header in final buffer")
                return EBML_LEAD_BYTE + buffer, 0
            logger.warning("⚠️ [REASSEMBLE] No EBML header in final buffer, processing anyway")
        return buffer, 0
