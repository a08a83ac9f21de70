import html
import logging
import re
import traceback

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    InlineQueryResultArticle,
    InlineQueryResultVideo,
    InputMediaPhoto,
    InputTextMessageContent,
    LinkPreviewOptions,
    Update,
)
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    InlineQueryHandler,
    MessageHandler,
    filters,
)

from . import config
from .dispatch import (
    ComposedSlideshow,
    DeferredHandoff,
    Delivery,
    Dispatcher,
    PhotoBatches,
    VideoReady,
    build_source_caption,
    parse_start_payload,
)
from .errors import MediaBotError, TokenNotFoundError
from .resolver import fetch_content_length, find_tiktok_link
from .token_cache import TokenCache

logger = logging.getLogger(__name__)

EXPIRED_LINK_TEXT = "This link has expired. Send the TikTok link again via inline mode."
USAGE_TEXT = "Send me a TikTok link, or type @{username} <link> in any chat."


# -------------------------
# Logging
# -------------------------
def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# -------------------------
# Error messages
# -------------------------
def _normalize_error_reason(raw_reason: str) -> str:
    reason = (raw_reason or "").strip()
    if not reason:
        return "unknown error"
    reason = reason.replace("\n", " ").replace("\r", " ")
    reason = re.sub(r"\s+", " ", reason).strip()
    return reason[:180]


def build_error_message(source_url: str, err: Exception) -> str:
    safe_url = html.escape(source_url, quote=True)
    safe_reason = html.escape(_normalize_error_reason(str(err)))
    return f'Couldn\'t download <a href="{safe_url}">media</a>: <i>{safe_reason}</i>'


def get_dispatcher(context: ContextTypes.DEFAULT_TYPE) -> Dispatcher:
    return context.bot_data["dispatcher"]


# -------------------------
# Delivery
# -------------------------
async def deliver(chat, delivery: Delivery) -> None:
    if isinstance(delivery, VideoReady):
        size = await fetch_content_length(delivery.video_url)
        logger.info(
            "Sending video: chat_id=%s url=%s size=%s",
            chat.id,
            delivery.video_url,
            f"{size} bytes" if size else "unknown",
        )
        await chat.send_video(
            video=delivery.video_url,
            caption=delivery.caption,
            parse_mode=ParseMode.HTML,
            supports_streaming=True,
        )
        return

    if isinstance(delivery, PhotoBatches):
        logger.info(
            "Sending media groups: chat_id=%s url=%s batches=%s",
            chat.id,
            delivery.source,
            len(delivery.batches),
        )
        for batch in delivery.batches:
            media_group = [
                InputMediaPhoto(
                    media=item.url,
                    caption=item.caption,
                    parse_mode=ParseMode.HTML if item.caption else None,
                )
                for item in batch
            ]
            await chat.send_media_group(media=media_group)
        return

    if isinstance(delivery, ComposedSlideshow):
        logger.info("Sending slideshow video: chat_id=%s url=%s bytes=%s", chat.id, delivery.source, len(delivery.data))
        await chat.send_video(
            video=delivery.data,
            filename="slideshow.mp4",
            caption=delivery.caption,
            parse_mode=ParseMode.HTML,
            supports_streaming=True,
        )
        return

    raise TypeError(f"cannot deliver {type(delivery).__name__} to a chat")


async def _dispatch_to_chat(chat, link: str, dispatcher: Dispatcher) -> None:
    try:
        delivery = await dispatcher.dispatch(link)
        await deliver(chat, delivery)
    except Exception as e:
        logger.error("Error handling URL %s: %s", link, e)
        logger.error(traceback.format_exc())
        await chat.send_message(
            build_error_message(link, e),
            parse_mode=ParseMode.HTML,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )


# -------------------------
# Handlers
# -------------------------
async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    chat = update.effective_chat
    if not message or not message.text or not chat:
        return

    link = find_tiktok_link(message.text)
    if not link:
        return
    logger.info("Message link: chat_id=%s link=%s", chat.id, link)
    await _dispatch_to_chat(chat, link, get_dispatcher(context))


async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat = update.effective_chat
    if not chat:
        return

    dispatcher = get_dispatcher(context)
    token = parse_start_payload(context.args[0]) if context.args else None
    if token is None:
        await chat.send_message(USAGE_TEXT.format(username=dispatcher.bot_username or "bot"))
        return

    try:
        link = dispatcher.lookup(token)
    except TokenNotFoundError:
        logger.info("Expired or unknown token: chat_id=%s", chat.id)
        await chat.send_message(EXPIRED_LINK_TEXT)
        return

    logger.info("Start payload redeemed: chat_id=%s link=%s", chat.id, link)
    await _dispatch_to_chat(chat, link, dispatcher)


async def handle_inline_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    inline_query = update.inline_query
    if not inline_query:
        return

    link = find_tiktok_link(inline_query.query)
    if not link:
        return
    logger.info("Inline query: id=%s link=%s", inline_query.id, link)

    try:
        delivery = await get_dispatcher(context).dispatch(link, deferred=True)
    except MediaBotError as e:
        logger.warning("Inline query left unanswered: id=%s link=%s err=%s", inline_query.id, link, e)
        return

    if isinstance(delivery, DeferredHandoff):
        result = InlineQueryResultArticle(
            id="1",
            title="TikTok slideshow",
            description="Open the chat with the bot to get all photos",
            input_message_content=InputTextMessageContent(
                f"Press the button below to download the slideshow. {build_source_caption(link)}",
                parse_mode=ParseMode.HTML,
            ),
            reply_markup=InlineKeyboardMarkup([[InlineKeyboardButton("Open in bot", url=delivery.link)]]),
        )
    elif isinstance(delivery, VideoReady):
        result = InlineQueryResultVideo(
            id="1",
            video_url=delivery.video_url,
            mime_type="video/mp4",
            thumbnail_url=delivery.cover_url or delivery.video_url,
            title=delivery.title or "TikTok video",
            caption=delivery.caption,
            parse_mode=ParseMode.HTML,
        )
    else:
        logger.error("Unexpected inline delivery: %s", type(delivery).__name__)
        return

    await inline_query.answer(results=[result], cache_time=config.INLINE_CACHE_TIME)


# -------------------------
# Jobs
# -------------------------
async def log_heartbeat(_: ContextTypes.DEFAULT_TYPE) -> None:
    logger.info("Bot is listening...")


async def sweep_token_cache(context: ContextTypes.DEFAULT_TYPE) -> None:
    removed = get_dispatcher(context).cache.purge_expired()
    if removed:
        logger.info("Token cache sweep: removed=%s", removed)


async def log_handler_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    # Last stop for anything a handler let through (Telegram API errors while
    # answering or replying); PTB keeps polling after this returns.
    logger.error("Unhandled error while processing update %s", update, exc_info=context.error)


# -------------------------
# Main
# -------------------------
def build_application(token: str, dispatcher: Dispatcher) -> Application:
    app = (
        Application.builder()
        .token(token)
        .connect_timeout(60)
        .read_timeout(300)
        .write_timeout(300)
        .pool_timeout(60)
        .concurrent_updates(True)
        .build()
    )
    app.bot_data["dispatcher"] = dispatcher

    app.add_handler(CommandHandler("start", handle_start))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    app.add_handler(InlineQueryHandler(handle_inline_query))
    app.add_error_handler(log_handler_error)

    app.job_queue.run_repeating(log_heartbeat, interval=config.HEARTBEAT_INTERVAL_SECONDS, first=0)
    app.job_queue.run_repeating(sweep_token_cache, interval=config.CACHE_SWEEP_INTERVAL_SECONDS)
    return app


def main() -> None:
    configure_logging()
    if not config.BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is required.")
    if not config.BOT_USERNAME:
        logger.warning("BOT_USERNAME is not set, inline slideshows will not be answered")

    dispatcher = Dispatcher(TokenCache())
    app = build_application(config.BOT_TOKEN, dispatcher)
    logger.info("Bot started. Polling and waiting for updates...")
    app.run_polling(close_loop=False)


if __name__ == "__main__":
    main()
