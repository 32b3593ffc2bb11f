"""
CPU device matcher.

Every host CPU is checked on its own against a cpu requirement. Several
host CPUs are alternatives, not cumulative capacity: the requirement
scores the best single CPU.
"""

from typing import List, Sequence, Tuple, Union

from engine_selector.schemas.hardware import AMD64, ARM64, CpuDescriptor
from engine_selector.schemas.manifest import CpuAmd64Requirement, CpuArm64Requirement
from engine_selector.services.selector import weights
from engine_selector.services.selector.result import MatchResult

CpuRequirement = Union[CpuAmd64Requirement, CpuArm64Requirement]


def _check_amd64(requirement: CpuAmd64Requirement, cpu: CpuDescriptor) -> Tuple[int, List[str]]:
    score = 0
    issues = []

    if requirement.manufacturer_id is not None:
        if requirement.manufacturer_id == cpu.manufacturer_id:
            score += weights.CPU_VENDOR
        else:
            issues.append(f"manufacturer id mismatch: {cpu.manufacturer_id}")

    # All missing flags are reported, not just the first
    for flag in requirement.flags:
        if flag in cpu.flags:
            score += weights.CPU_FLAG
        else:
            issues.append(f"flag {flag} missing")

    return score, issues


def _check_arm64(requirement: CpuArm64Requirement, cpu: CpuDescriptor) -> Tuple[int, List[str]]:
    score = 0
    issues = []

    if requirement.implementer_id is not None:
        if requirement.implementer_id == cpu.implementer_id:
            score += weights.CPU_VENDOR
        else:
            issues.append(f"implementer id mismatch: {_hex(cpu.implementer_id)}")

    if requirement.part_number is not None:
        if requirement.part_number == cpu.part_number:
            score += weights.CPU_MODEL
        else:
            issues.append(f"part number mismatch: {_hex(cpu.part_number)}")

    for feature in requirement.features:
        if feature in cpu.features:
            score += weights.CPU_FLAG
        else:
            issues.append(f"feature not found: {feature}")

    return score, issues


def _hex(value) -> str:
    return "unknown" if value is None else f"{value:x}"


def check_cpu(requirement: CpuRequirement, cpu: CpuDescriptor) -> Tuple[int, List[str]]:
    """
    Score one host CPU against a cpu requirement.

    Returns:
        (score, issues); score is 0 whenever issues is non-empty
    """
    if requirement.architecture != cpu.architecture:
        return 0, [f"architecture not {requirement.architecture}"]

    if cpu.architecture == AMD64:
        extra, issues = _check_amd64(requirement, cpu)
    elif cpu.architecture == ARM64:
        extra, issues = _check_arm64(requirement, cpu)
    else:
        extra, issues = 0, []

    if issues:
        return 0, issues
    return weights.CPU_DEVICE + extra, []


def match_cpu(requirement: CpuRequirement, cpus: Sequence[CpuDescriptor]) -> MatchResult:
    """
    Match a cpu requirement against all host CPUs.

    Args:
        requirement: A parsed amd64 or arm64 requirement
        cpus: Host CPUs from the snapshot

    Returns:
        MatchResult with the best CPU score. Issues are prefixed with
        "cpu <index>: " when the host has more than one CPU.

    Example:
        result = match_cpu(CpuAmd64Requirement(flags=("avx2",)), snapshot.cpus)
    """
    if not cpus:
        return MatchResult.failed("no cpu found on host system")

    result = MatchResult()
    for i, cpu in enumerate(cpus):
        score, issues = check_cpu(requirement, cpu)
        if issues:
            if len(cpus) > 1:
                result.issues.extend(f"cpu {i}: {issue}" for issue in issues)
            else:
                result.issues.extend(issues)
            continue

        result.matched = True
        result.score = max(result.score, score)

    return result
