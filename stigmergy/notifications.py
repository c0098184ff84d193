"""
Desktop notifications for coordination events.

Uses notify-send (freedesktop compliant) when NOTIFY=true in stigmergy.env.
Delivery is best effort: failures are logged and never raised.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

VALID_URGENCIES = ("low", "normal", "critical")
APP_NAME = "stigmergy"
MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", APP_NAME,
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_claimed(task_id: str, actor: str):
    notify(f"Stigmergy: {task_id}", f"Claimed by {actor}", "low")


def notify_completed(task_id: str, actor: str | None = None):
    notify(f"Stigmergy: {task_id}", "Completed" + (f" by {actor}" if actor else ""), "normal")


def notify_released(task_id: str, actor: str):
    notify(f"Stigmergy: {task_id}", f"Released by {actor}", "low")


def notify_archived(epoch_id: str, task_count: int):
    notify(f"Stigmergy: {epoch_id}", f"Archived with {task_count} tasks", "normal")


def dispatch_task_event(event: str, task_id: str, actor: str | None):
    """Route a claim manager event to its notification."""
    if event == "claimed":
        notify_claimed(task_id, actor or "unknown")
    elif event == "released":
        notify_released(task_id, actor or "unknown")
    elif event == "completed":
        notify_completed(task_id, actor)
    else:
        logger.debug(f"No notification for event '{event}'")
