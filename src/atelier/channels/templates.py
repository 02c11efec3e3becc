"""通知消息模板

把 tagged 通知 payload 渲染为与渠道无关的 RenderedMessage。
只有 EMAIL_KINDS 中的通知类型会发送邮件，其余仅站内 + 实时推送。
"""

from html import escape

from atelier.core.models import NotificationKind
from atelier.core.models.notification import (
    CreditsAddedNotice,
    LowCreditsNotice,
    ReadyForReviewNotice,
    RevisionRequestedNotice,
    TaskAssignedNotice,
    TaskCancelledNotice,
)

from .models import RenderedMessage

APP_NAME = "Atelier"

# 发送邮件的通知类型
EMAIL_KINDS: frozenset[NotificationKind] = frozenset(
    {
        NotificationKind.TASK_ASSIGNED,
        NotificationKind.READY_FOR_REVIEW,
        NotificationKind.TASK_APPROVED,
        NotificationKind.REVISION_REQUESTED,
        NotificationKind.TASK_CANCELLED,
        NotificationKind.LOW_CREDITS,
        NotificationKind.CREDITS_ADDED,
    }
)

_CREDIT_KINDS = {NotificationKind.LOW_CREDITS, NotificationKind.CREDITS_ADDED}


def link_for(payload, app_url: str) -> str:
    """通知对应的页面链接"""
    if NotificationKind(payload.kind) in _CREDIT_KINDS:
        return f"{app_url}/credits"
    if payload.task_id:
        return f"{app_url}/tasks/{payload.task_id}"
    return app_url


def render(payload, app_url: str) -> RenderedMessage:
    """渲染通知 payload

    Args:
        payload: NotificationPayload 的任一变体
        app_url: 前端地址

    Returns:
        RenderedMessage
    """
    link = link_for(payload, app_url)
    details = _details(payload)
    text_lines = [payload.message, *details]
    if link:
        text_lines.append(link)
    return RenderedMessage(
        subject=f"[{APP_NAME}] {payload.title}",
        text="\n".join(text_lines),
        html=_wrap_html(payload.title, payload.message, details, link),
        link=link,
    )


def _details(payload) -> list[str]:
    """各变体的附加信息行"""
    match payload:
        case RevisionRequestedNotice():
            return [
                f"Feedback: {payload.feedback_excerpt}",
                f"Revisions used: {payload.revisions_used}/{payload.max_revisions}",
            ]
        case TaskAssignedNotice():
            return [f"Task: {payload.task_title}"]
        case ReadyForReviewNotice():
            return [f"Deliverables: {payload.deliverable_count}"]
        case TaskCancelledNotice() if payload.refunded_credits:
            return [f"Refunded credits: {payload.refunded_credits}"]
        case LowCreditsNotice():
            return [f"Balance: {payload.balance} (threshold {payload.threshold})"]
        case CreditsAddedNotice():
            return [f"Added: {payload.credits}", f"Balance: {payload.balance}"]
    return []


def _wrap_html(title: str, message: str, details: list[str], link: str) -> str:
    rows = "".join(
        f'<p style="margin: 4px 0; color: #444;">{escape(line)}</p>' for line in details
    )
    button = (
        f'<a href="{escape(link, quote=True)}" style="display: inline-block; '
        f"background: #000; color: #fff; padding: 12px 24px; text-decoration: none; "
        f'border-radius: 6px; margin-top: 16px;">Open {APP_NAME}</a>'
        if link
        else ""
    )
    return (
        '<div style="font-family: -apple-system, sans-serif; max-width: 600px; '
        'margin: 0 auto; padding: 20px;">'
        f'<h2 style="margin-top: 0;">{escape(title)}</h2>'
        f"<p>{escape(message)}</p>"
        f"{rows}{button}"
        f'<p style="color: #666; font-size: 12px; margin-top: 16px;">'
        f"This is an automated notification from {APP_NAME}</p>"
        "</div>"
    )
