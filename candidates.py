"""
candidates.py - Candidate matrix generation

Heap ceilings stay below 32g so the Gradle daemon keeps CompressedOops on.
Candidate order is evaluation order, and the first-seen candidate wins
score ties.
"""

from typing import List

from tuner_models import Candidate

# (gradle heap, kotlin heap) pairs per RAM tier
HIGH_RAM_HEAPS = [("4g", "2g"), ("6g", "3g"), ("8g", "4g")]
MID_RAM_HEAPS = [("4g", "2g"), ("6g", "3g")]
LOW_RAM_HEAPS = [("3g", "2g"), ("4g", "2g")]


def generate(ram_gb: int, cpu_cores: int) -> List[Candidate]:
    """
    Build the ordered candidate list for a host.

    Args:
        ram_gb: Total RAM in whole GB
        cpu_cores: Logical CPU count

    Returns:
        Candidates in evaluation order
    """
    if ram_gb >= 64:
        heaps, worker_cap = HIGH_RAM_HEAPS, 6
    elif ram_gb >= 32:
        heaps, worker_cap = MID_RAM_HEAPS, 6
    else:
        heaps, worker_cap = LOW_RAM_HEAPS, 4

    workers = max(1, min(cpu_cores, worker_cap))
    return [
        Candidate(gradle_xmx=gradle, kotlin_xmx=kotlin, workers=workers)
        for gradle, kotlin in heaps
    ]
