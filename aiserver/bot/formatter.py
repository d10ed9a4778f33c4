"""Message formatters for Telegram admin notifications."""

from datetime import datetime

from aiserver.services.circuit_breaker import CircuitBreakerStats, CircuitState

STATE_EMOJI = {
    CircuitState.CLOSED: "🟢",
    CircuitState.HALF_OPEN: "🟡",
    CircuitState.OPEN: "🔴",
}


def escape_md(text: str) -> str:
    """Escape special Markdown characters for safe display."""
    for char in ["_", "*", "`", "[", "]", "(", ")"]:
        text = text.replace(char, "\\" + char)
    return text


def format_state_change(
    name: str,
    old_state: CircuitState,
    new_state: CircuitState,
    timestamp: datetime | None = None,
) -> str:
    """Format an admin alert for a circuit transition.

    Examples:
        🔴 *replicate*: CLOSED → OPEN
    """
    timestamp = timestamp or datetime.now()
    lines = [
        f"{STATE_EMOJI[new_state]} *{escape_md(name)}*: "
        f"{old_state.value} → {new_state.value}",
    ]
    if new_state == CircuitState.OPEN:
        lines.append("Requests are being rejected until the service recovers.")
    elif new_state == CircuitState.CLOSED:
        lines.append("Service recovered, requests flow normally.")
    lines.append(f"_{timestamp.strftime('%Y-%m-%d %H:%M:%S')}_")
    return "\n".join(lines)


def format_circuit_status(stats: dict[str, CircuitBreakerStats]) -> str:
    """Format the /circuits overview."""
    if not stats:
        return "No circuit breakers registered"

    lines = ["*Circuit breakers*", ""]
    for name, s in sorted(stats.items()):
        line = (
            f"{STATE_EMOJI[s.state]} *{escape_md(name)}* {s.state.value} "
            f"(failures {s.failure_count}, requests {s.total_requests}, "
            f"errors {s.total_failures}, rejected {s.total_rejections})"
        )
        if s.time_until_reset:
            line += f", probe in {s.time_until_reset:.0f}s"
        lines.append(line)

    open_count = sum(1 for s in stats.values() if s.state == CircuitState.OPEN)
    lines.append("")
    lines.append(f"Open: {open_count}/{len(stats)}")
    return "\n".join(lines)
