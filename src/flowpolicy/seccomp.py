"""Seccomp profiles built from the syscalls recorded for a pod."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

DEFAULT_ACTION = "SCMP_ACT_ERRNO"
ALLOW_ACTION = "SCMP_ACT_ALLOW"
DEFAULT_ACTIONS = ("SCMP_ACT_ERRNO", "SCMP_ACT_KILL", "SCMP_ACT_LOG")

_ARCHITECTURES: dict[str, tuple[str, ...]] = {
    "x86_64": ("SCMP_ARCH_X86_64",),
    "amd64": ("SCMP_ARCH_X86_64",),
    "arm64": ("SCMP_ARCH_ARM64",),
    "aarch64": ("SCMP_ARCH_ARM64",),
}


@dataclass(frozen=True)
class PodSyscalls:
    """Syscalls the broker recorded for one pod."""

    pod_name: str
    namespace: str
    syscalls: tuple[str, ...]
    arch: str

    @classmethod
    def from_broker(cls, data: dict[str, Any]) -> PodSyscalls:
        raw = data.get("syscalls") or ""
        if isinstance(raw, str):
            names = raw.split(",")
        else:
            names = list(raw)
        return cls(
            pod_name=str(data.get("pod_name") or ""),
            namespace=str(data.get("pod_namespace") or ""),
            syscalls=tuple(n.strip() for n in names if n and n.strip()),
            arch=str(data.get("arch") or ""),
        )


@dataclass(frozen=True)
class SyscallRule:
    names: tuple[str, ...]
    action: str = ALLOW_ACTION


@dataclass(frozen=True)
class SeccompProfile:
    """A seccomp profile in the OCI/Kubernetes localhost profile format."""

    default_action: str
    architectures: tuple[str, ...] = ()
    syscalls: tuple[SyscallRule, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaultAction": self.default_action,
            "architectures": list(self.architectures),
            "syscalls": [
                {"names": list(rule.names), "action": rule.action}
                for rule in self.syscalls
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=4)


def build_profile(
    pod_syscalls: PodSyscalls,
    default_action: str = DEFAULT_ACTION,
) -> SeccompProfile:
    """Allow exactly the recorded syscalls, deny everything else."""
    names = merge_syscalls(pod_syscalls.syscalls)
    return SeccompProfile(
        default_action=default_action,
        architectures=_ARCHITECTURES.get(pod_syscalls.arch.lower(), ()),
        syscalls=(SyscallRule(names=tuple(names)),) if names else (),
    )


def merge_syscalls(*syscall_lists: tuple[str, ...] | list[str]) -> list[str]:
    """Union of several syscall lists, sorted."""
    merged: set[str] = set()
    for names in syscall_lists:
        merged.update(names)
    return sorted(merged)


def validate_profile(profile: SeccompProfile) -> None:
    if not profile.default_action:
        raise ValueError("default action is required")
    if not profile.architectures:
        raise ValueError("at least one architecture must be specified")
    if not profile.syscalls:
        raise ValueError("at least one syscall rule must be specified")
