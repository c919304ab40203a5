"""
Pomodoro Sync — Telegram Bot.

Telegram is the user interface: every timer action, the record list, the
deadline list, the two LLM reports and data export / import / reset go
through bot commands. Alarms arrive as ordinary Telegram messages that
keep repeating until /ack.

All state lives in a single PomodoroApp stored in ``bot_data``; it is
created in ``post_init`` (inside the bot's event loop) and flushed in
``post_shutdown``.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import io
import json
import logging
import sys
from dataclasses import replace
from datetime import date, datetime
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.llm import LLMError
from src.core.time_utils import format_datetime, format_duration_sec, parse_duration, to_iso
from src.data.models import DEADLINE_STATUSES
from src.ports.store_port import NetworkError

if TYPE_CHECKING:
    from src.core.app_state import PomodoroApp

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
_SHORT_ID = 8

_SETTING_FLAGS = {
    "speech": "enable_speech",
    "beep": "enable_beep",
    "buzzer": "enable_buzzer_mp3",
}


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pomodoro(context: ContextTypes.DEFAULT_TYPE) -> PomodoroApp:
    return context.bot_data["pomodoro"]


def _short(identifier: str) -> str:
    return identifier[:_SHORT_ID]


def _resolve_id(prefix: str, ids: list[str]) -> str | None:
    """Match a full id or a unique prefix of one."""
    prefix = prefix.strip()
    if not prefix:
        return None
    if prefix in ids:
        return prefix
    matches = [i for i in ids if i.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"


def _truncate(text: str) -> str:
    if len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return text[: MAX_MESSAGE_LENGTH - 1] + "…"


def _parse_day(raw: str) -> date | None:
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        return None


def _parse_local_datetime(raw: str) -> str | None:
    """Parse ``YYYY-MM-DDTHH:MM`` (or with a space) as local time, return ISO UTC."""
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    return to_iso(parsed.astimezone())


def _split_timer_args(args: list[str]) -> tuple[str, int | None]:
    """``/timer Deep work 25`` -> ("Deep work", 1500). The duration is optional."""
    if args:
        duration = parse_duration(args[-1])
        if duration is not None:
            return " ".join(args[:-1]).strip(), duration
    return " ".join(args).strip(), None


def format_status(app: PomodoroApp) -> str:
    session = app.session
    lines = []
    if app.loading:
        lines.append("(syncing…)")
    alarm = session.alarm
    active = session.active
    if alarm is not None:
        lines.append(f"⏰ '{alarm.event_name}' has finished.")
        lines.append(alarm.body)
        lines.append("Send /ack to silence the alarm.")
    elif active is not None:
        lines.append(f"▶️ {active.event_name}: {format_duration_sec(session.remaining_sec)} left")
        lines.append(f"Ends at {format_datetime(active.ends_at)}")
        lines.append("/stop to abandon, /finish to end it now.")
    else:
        default = format_duration_sec(session.settings.default_duration_sec)
        lines.append(f"Idle. Default duration: {default}")
        lines.append("Start with /timer <event> [minutes]")
    return "\n".join(lines)


def format_hardware_call(call) -> str:
    report = call.report
    lines = [report.title, "", report.summary, ""]
    for p in report.parameters:
        note = f" ({p.note})" if p.note else ""
        lines.append(f"• {p.label}: {p.value}{p.unit}{note}")
    if report.chart_points:
        series = " ".join(f"{pt.t}={pt.value}" for pt in report.chart_points)
        lines += ["", f"{report.chart_title}: {series}"]
    lines += ["", report.pseudo_code, "", report.interpretation]
    lines.append(f"\n(from {call.source_records_count} record(s))")
    return _truncate("\n".join(lines))


# ---------------------------------------------------------------------------
# Command handlers: general
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Pomodoro Sync*!\n\n"
        "• /timer <event> [minutes] starts a countdown\n"
        "• /status shows what is running\n"
        "• /records lists today's sessions\n"
        "• /review and /hardware ask the AI about your day\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Timer:\n"
        "/timer <event> [minutes|MM:SS] — start a countdown\n"
        "/stop — abandon the running countdown\n"
        "/finish — end the running countdown now\n"
        "/ack — silence the alarm\n"
        "/replay — ring the alarm once more\n"
        "/status — current state\n\n"
        "Events and records:\n"
        "/events, /addevent <name>, /removeevent <name>\n"
        "/records [YYYY-MM-DD], /deleterecord <id>, /clearrecords\n\n"
        "Deadlines:\n"
        "/deadlines, /adddeadline <YYYY-MM-DDTHH:MM> <title>\n"
        "/deadline <id> <not_started|ongoing|done>, /removedeadline <id>\n\n"
        "AI:\n"
        "/review — mentor review of today\n"
        "/hardware — bio-kernel hardware report of today\n"
        "/setkey <key>, /setmodel <model>, /setbase <url>\n\n"
        "Settings and data:\n"
        "/settings [speech|beep|buzzer] [on|off]\n"
        "/export, /import (send a JSON file), /reset\n"
        "/help — Show this message",
    )


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — current countdown or alarm."""
    await update.message.reply_text(format_status(_pomodoro(context)))


# ---------------------------------------------------------------------------
# Command handlers: timer
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_timer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /timer <event> [duration] — start a countdown."""
    app = _pomodoro(context)
    session = app.session

    if session.alarm is not None:
        await update.message.reply_text("An alarm is still ringing. Send /ack first.")
        return
    if session.active is not None:
        await update.message.reply_text("A countdown is already running.\n\n" + format_status(app))
        return

    name, duration = _split_timer_args(context.args or [])
    if not name:
        name = session.events[0].name if session.events else ""
    if duration is None:
        duration = session.settings.default_duration_sec
    if name and name not in {e.name for e in session.events}:
        session.add_event(name)

    record = app.start_session(name, duration)
    if record is None:
        await update.message.reply_text("Couldn't start the countdown. Check /status.")
        return
    await update.message.reply_text(
        f"▶️ {record.event_name} started for {format_duration_sec(record.duration_sec)}."
    )


@authorized_only
async def cmd_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stop — abandon the countdown without an alarm."""
    record = _pomodoro(context).session.stop()
    if record is None:
        await update.message.reply_text("Nothing is running.")
        return
    await update.message.reply_text(f"⏹ {record.event_name} stopped.")


@authorized_only
async def cmd_finish(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /finish — end the countdown now and raise the alarm."""
    record = _pomodoro(context).session.finish()
    if record is None:
        await update.message.reply_text("Nothing is running.")


@authorized_only
async def cmd_ack(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /ack — silence and clear the alarm."""
    if _pomodoro(context).session.acknowledge_alarm():
        await update.message.reply_text("🔕 Alarm acknowledged.")
    else:
        await update.message.reply_text("No alarm is ringing.")


@authorized_only
async def cmd_replay(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /replay — ring the current alarm once more."""
    if not await _pomodoro(context).session.replay_alarm():
        await update.message.reply_text("No alarm is ringing.")


# ---------------------------------------------------------------------------
# Command handlers: events and records
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    events = _pomodoro(context).session.events
    if not events:
        await update.message.reply_text("No events. Add one with /addevent <name>.")
        return
    await update.message.reply_text("Events:\n" + "\n".join(f"• {e.name}" for e in events))


@authorized_only
async def cmd_addevent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    name = " ".join(context.args or []).strip()
    if not name:
        await update.message.reply_text("Usage: /addevent <name>")
        return
    _pomodoro(context).session.add_event(name)
    await update.message.reply_text(f"✅ Event '{name}' saved.")


@authorized_only
async def cmd_removeevent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    name = " ".join(context.args or []).strip()
    if not name:
        await update.message.reply_text("Usage: /removeevent <name>")
        return
    if _pomodoro(context).session.remove_event(name):
        await update.message.reply_text(f"🗑 Event '{name}' removed.")
    else:
        await update.message.reply_text(f"No event named '{name}'. See /events.")


@authorized_only
async def cmd_records(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /records [YYYY-MM-DD] — the day's sessions, newest first."""
    day = None
    if context.args:
        day = _parse_day(context.args[0])
        if day is None:
            await update.message.reply_text("Usage: /records [YYYY-MM-DD]")
            return

    records = _pomodoro(context).records_for_day(day)
    if not records:
        await update.message.reply_text("No records for that day.")
        return

    lines = [f"Records ({len(records)}):"]
    for r in records:
        stop = format_datetime(r.stopped_at) if r.stopped_at else "running"
        lines.append(
            f"{_short(r.id)} | {r.event_name} | {format_duration_sec(r.duration_sec)} | "
            f"{format_datetime(r.started_at)} → {stop} | {r.ended_by if r.stopped_at else '-'}"
        )
    await update.message.reply_text(_truncate("\n".join(lines)))


@authorized_only
async def cmd_deleterecord(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _pomodoro(context).session
    if not context.args:
        await update.message.reply_text("Usage: /deleterecord <id>\nUse /records to see IDs.")
        return

    record_id = _resolve_id(context.args[0], [r.id for r in session.records])
    if record_id is None:
        await update.message.reply_text("Unknown record ID. Use /records to see valid IDs.")
        return
    if session.delete_record(record_id):
        await update.message.reply_text("🗑 Record deleted.")
    else:
        await update.message.reply_text("That record is still running. /stop it first.")


@authorized_only
async def cmd_clearrecords(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if _pomodoro(context).session.clear_records():
        await update.message.reply_text("🗑 All records cleared.")
    else:
        await update.message.reply_text("A countdown is running. /stop it first.")


# ---------------------------------------------------------------------------
# Command handlers: deadlines
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_deadlines(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    deadlines = _pomodoro(context).deadlines
    if not deadlines:
        await update.message.reply_text("No deadlines. Add one with /adddeadline.")
        return
    lines = ["Deadlines:"]
    for d in deadlines:
        lines.append(f"{_short(d.id)} | {d.title} | {format_datetime(d.ddl_at)} | {d.status}")
    await update.message.reply_text(_truncate("\n".join(lines)))


@authorized_only
async def cmd_adddeadline(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    args = context.args or []
    usage = "Usage: /adddeadline <YYYY-MM-DDTHH:MM> <title>"
    if len(args) < 2:
        await update.message.reply_text(usage)
        return
    ddl_at = _parse_local_datetime(args[0])
    if ddl_at is None:
        await update.message.reply_text(usage)
        return

    item = _pomodoro(context).add_deadline(" ".join(args[1:]), ddl_at)
    if item is None:
        await update.message.reply_text(usage)
        return
    await update.message.reply_text(f"✅ Deadline '{item.title}' due {format_datetime(item.ddl_at)}.")


@authorized_only
async def cmd_deadline(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deadline <id> <status> — change a deadline's status."""
    app = _pomodoro(context)
    args = context.args or []
    if len(args) != 2 or args[1] not in DEADLINE_STATUSES:
        await update.message.reply_text(
            f"Usage: /deadline <id> <{'|'.join(DEADLINE_STATUSES)}>"
        )
        return
    deadline_id = _resolve_id(args[0], [d.id for d in app.deadlines])
    if deadline_id is None or not app.update_deadline(deadline_id, status=args[1]):
        await update.message.reply_text("Unknown deadline ID. Use /deadlines to see valid IDs.")
        return
    await update.message.reply_text(f"✅ Deadline marked {args[1]}.")


@authorized_only
async def cmd_removedeadline(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    app = _pomodoro(context)
    if not context.args:
        await update.message.reply_text("Usage: /removedeadline <id>")
        return
    deadline_id = _resolve_id(context.args[0], [d.id for d in app.deadlines])
    if deadline_id is None or not app.remove_deadline(deadline_id):
        await update.message.reply_text("Unknown deadline ID. Use /deadlines to see valid IDs.")
        return
    await update.message.reply_text("🗑 Deadline removed.")


# ---------------------------------------------------------------------------
# Command handlers: AI reports and settings
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_review(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /review — blunt mentor review of today's records."""
    processing_msg = await update.message.reply_text("Reviewing your day...")
    try:
        text = await _pomodoro(context).mentor_review()
    except LLMError as exc:
        logger.error("/review error: %s", exc)
        await processing_msg.edit_text(f"Review failed: {exc}")
        return
    await processing_msg.edit_text(_truncate(text or "(empty answer)"))


@authorized_only
async def cmd_hardware(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /hardware — bio-kernel hardware report of today's records."""
    processing_msg = await update.message.reply_text("Compiling bio-kernel telemetry...")
    try:
        call = await _pomodoro(context).hardware_report()
    except LLMError as exc:
        logger.error("/hardware error: %s", exc)
        await processing_msg.edit_text(f"Hardware report failed: {exc}")
        return
    await processing_msg.edit_text(format_hardware_call(call))


def _update_ai(app: PomodoroApp, **changes: str) -> None:
    app.session.update_settings(lambda prev: replace(prev, ai=replace(prev.ai, **changes)))


@authorized_only
async def cmd_setkey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setkey <key> — store the API key and delete the message."""
    key = " ".join(context.args or []).strip()
    if not key:
        await update.message.reply_text("Usage: /setkey <api key>")
        return
    _update_ai(_pomodoro(context), api_key=key)
    try:
        await update.message.delete()
    except Exception as exc:
        logger.warning("Couldn't delete the /setkey message: %s", exc)
    await update.effective_chat.send_message("🔑 API key saved.")


@authorized_only
async def cmd_setmodel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    model = " ".join(context.args or []).strip()
    if not model:
        await update.message.reply_text("Usage: /setmodel <model>")
        return
    _update_ai(_pomodoro(context), model=model)
    await update.message.reply_text(f"✅ Model set to {model}.")


@authorized_only
async def cmd_setbase(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    base_url = " ".join(context.args or []).strip()
    if not base_url:
        await update.message.reply_text("Usage: /setbase <url>")
        return
    _update_ai(_pomodoro(context), base_url=base_url)
    await update.message.reply_text(f"✅ Base URL set to {base_url}.")


@authorized_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settings [speech|beep|buzzer] [on|off] — show or toggle alarm modalities."""
    app = _pomodoro(context)
    args = context.args or []
    if len(args) == 2 and args[0] in _SETTING_FLAGS and args[1] in ("on", "off"):
        field_name = _SETTING_FLAGS[args[0]]
        enabled = args[1] == "on"
        app.session.update_settings(lambda prev: replace(prev, **{field_name: enabled}))
    elif args:
        await update.message.reply_text("Usage: /settings [speech|beep|buzzer] [on|off]")
        return

    s = app.session.settings
    await update.message.reply_text(
        f"Default duration: {format_duration_sec(s.default_duration_sec)}\n"
        f"speech: {_on_off(s.enable_speech)}, beep: {_on_off(s.enable_beep)}, "
        f"buzzer: {_on_off(s.enable_buzzer_mp3)}\n"
        f"AI: {s.ai.provider} / {s.ai.model} @ {s.ai.base_url} "
        f"(key {'set' if s.ai.api_key else 'missing'})"
    )


# ---------------------------------------------------------------------------
# Command handlers: export / import / reset
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_export(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /export — send the whole profile as a JSON document."""
    result = await _pomodoro(context).export_snapshot()
    body = json.dumps(result.payload, ensure_ascii=False, indent=2).encode("utf-8")
    caption = "Snapshot exported."
    if result.source != "remote":
        caption = "⚠️ Remote store unreachable, exported the local state instead."
    await update.message.reply_document(
        document=io.BytesIO(body),
        filename=f"pomodoro-export-{date.today().isoformat()}.json",
        caption=caption,
    )


@authorized_only
async def cmd_import(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "Send the exported .json file as a document to import it. "
        "Known fields overwrite the current data."
    )


@authorized_only
async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle an uploaded .json document — import it as a snapshot."""
    app = _pomodoro(context)
    try:
        tg_file = await update.message.document.get_file()
        raw = await tg_file.download_as_bytearray()
        parsed = json.loads(bytes(raw).decode("utf-8"))
        count = await app.import_snapshot(parsed)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Import rejected: %s", exc)
        await update.message.reply_text("That file is not a valid snapshot.")
        return
    except NetworkError as exc:
        logger.error("Import upload failed: %s", exc)
        await update.message.reply_text(f"Imported locally, but the upload failed: {exc}")
        return
    await update.message.reply_text(f"✅ Imported {count} field(s).")


@authorized_only
async def cmd_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reset — ask for confirmation before wiping all data."""
    keyboard = [[
        InlineKeyboardButton("Delete everything", callback_data="reset:yes"),
        InlineKeyboardButton("Cancel", callback_data="reset:no"),
    ]]
    await update.message.reply_text(
        "This deletes all records, events, deadlines and settings, locally and remotely. Continue?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


async def _handle_reset_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the inline confirmation of /reset."""
    query = update.callback_query
    await query.answer()

    # Verify the user is authorized
    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    if query.data != "reset:yes":
        await query.edit_message_text("Reset cancelled.")
        return

    try:
        await _pomodoro(context).reset_all()
    except NetworkError as exc:
        logger.error("reset error: %s", exc)
        await query.edit_message_text(f"Reset failed, nothing was deleted: {exc}")
        return
    await query.edit_message_text("🗑 All data deleted.")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    """Create the PomodoroApp inside the bot's event loop and wait for hydration."""
    from src.adapters.alarm_loop import RepeatingAlarm
    from src.adapters.telegram_notifier import TelegramNotifier
    from src.core.app_state import PomodoroApp

    if "pomodoro" in app.bot_data:
        await app.bot_data["pomodoro"].ready()
        return

    notifier = app.bot_data.get("notifier") or TelegramNotifier(app.bot)
    alarm = RepeatingAlarm(
        notifier,
        recipients=settings.ALLOWED_USER_IDS,
        repeat_seconds=settings.ALARM_REPEAT_SECONDS,
    )
    pomodoro = PomodoroApp.from_settings(alarm)
    app.bot_data["notifier"] = notifier
    app.bot_data["pomodoro"] = pomodoro
    await pomodoro.ready()
    logger.info("Pomodoro state hydrated (state: %s)", pomodoro.session.state)


async def _post_shutdown(app: Application) -> None:
    pomodoro = app.bot_data.get("pomodoro")
    if pomodoro is not None:
        await pomodoro.shutdown()


def build_app() -> Application:
    """Build and configure the Telegram Application with all handlers."""
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("timer", cmd_timer))
    app.add_handler(CommandHandler("stop", cmd_stop))
    app.add_handler(CommandHandler("finish", cmd_finish))
    app.add_handler(CommandHandler("ack", cmd_ack))
    app.add_handler(CommandHandler("replay", cmd_replay))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CommandHandler("addevent", cmd_addevent))
    app.add_handler(CommandHandler("removeevent", cmd_removeevent))
    app.add_handler(CommandHandler("records", cmd_records))
    app.add_handler(CommandHandler("deleterecord", cmd_deleterecord))
    app.add_handler(CommandHandler("clearrecords", cmd_clearrecords))
    app.add_handler(CommandHandler("deadlines", cmd_deadlines))
    app.add_handler(CommandHandler("adddeadline", cmd_adddeadline))
    app.add_handler(CommandHandler("deadline", cmd_deadline))
    app.add_handler(CommandHandler("removedeadline", cmd_removedeadline))
    app.add_handler(CommandHandler("review", cmd_review))
    app.add_handler(CommandHandler("hardware", cmd_hardware))
    app.add_handler(CommandHandler("setkey", cmd_setkey))
    app.add_handler(CommandHandler("setmodel", cmd_setmodel))
    app.add_handler(CommandHandler("setbase", cmd_setbase))
    app.add_handler(CommandHandler("settings", cmd_settings))
    app.add_handler(CommandHandler("export", cmd_export))
    app.add_handler(CommandHandler("import", cmd_import))
    app.add_handler(CommandHandler("reset", cmd_reset))
    app.add_handler(CallbackQueryHandler(_handle_reset_callback, pattern=r"^reset:(yes|no)$"))

    # Snapshot upload
    app.add_handler(MessageHandler(filters.Document.FileExtension("json"), handle_document))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    if not settings.TELEGRAM_BOT_TOKEN:
        print("TELEGRAM_BOT_TOKEN is not set. Add it to .env or the environment.", file=sys.stderr)
        sys.exit(1)
    logger.info("Starting Pomodoro Sync bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
