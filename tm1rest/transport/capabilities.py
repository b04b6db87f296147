"""Explicit server capability checks based on product version."""

from pydantic import BaseModel, ConfigDict


class CapabilityCheck(BaseModel):
    """Typed outcome of a version gate.

    Callers check ``supported`` at the top of an operation instead of
    relying on method decoration.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    supported: bool
    required_version: str
    actual_version: str | None = None
    reason: str | None = None


def _version_parts(version: str) -> list[int]:
    parts: list[int] = []
    for piece in version.strip().split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return parts


def verify_version(actual_version: str | None, required_version: str) -> bool:
    """Check that ``actual_version`` is at least ``required_version``.

    Versions are compared numerically component by component, missing
    components count as zero ("11.8" == "11.8.0").

    Args:
        actual_version: Version reported by the server.
        required_version: Minimum version needed.

    Returns:
        True if the actual version satisfies the requirement.
    """
    if not actual_version or not required_version:
        return False

    actual = _version_parts(actual_version)
    required = _version_parts(required_version)
    width = max(len(actual), len(required))
    actual += [0] * (width - len(actual))
    required += [0] * (width - len(required))
    return actual >= required


def check_capability(
    actual_version: str | None, required_version: str
) -> CapabilityCheck:
    """Build a CapabilityCheck for a version requirement.

    Args:
        actual_version: Version reported by the server, if known.
        required_version: Minimum version needed.

    Returns:
        CapabilityCheck describing whether the requirement holds.
    """
    if actual_version is None:
        return CapabilityCheck(
            supported=False,
            required_version=required_version,
            reason="Server version unknown",
        )

    if verify_version(actual_version, required_version):
        return CapabilityCheck(
            supported=True,
            required_version=required_version,
            actual_version=actual_version,
        )

    return CapabilityCheck(
        supported=False,
        required_version=required_version,
        actual_version=actual_version,
        reason=f"Requires version {required_version}, server is {actual_version}",
    )
