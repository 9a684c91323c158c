"""Step content selection - template or catalog based bodies."""
import html
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from campaign_engine.db.models.campaign import Campaign
from campaign_engine.db.models.template import Template, CatalogItem


class CampaignConfigurationError(Exception):
    """Raised when a campaign step cannot be turned into email content."""


def _message_to_html(message: str) -> str:
    escaped = html.escape(message)
    return escaped.replace("\r\n", "<br>").replace("\n", "<br>").replace("\r", "<br>")


def render_catalog_html(items: List[CatalogItem], message: Optional[str] = None) -> str:
    parts = ['<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">']
    if message:
        parts.append(f'<div style="margin-bottom:20px;line-height:1.6;">{_message_to_html(message)}</div>')

    for item in items:
        block = [
            '<div style="border:1px solid #dddddd;margin:20px 0;padding:15px;border-radius:8px;">',
            f"<h3>{html.escape(item.title)}</h3>",
        ]
        if item.description:
            block.append(f"<p>{html.escape(item.description)}</p>")
        if item.price is not None:
            block.append(f'<p style="font-weight:bold;color:#2c5aa0;">Price: {item.price}</p>')
        if item.image_url:
            block.append(
                f'<img src="{html.escape(item.image_url, quote=True)}" alt="{html.escape(item.title, quote=True)}" '
                'style="max-width:200px;height:auto;">'
            )
        if item.file_url:
            label = html.escape(item.file_name or "Download")
            block.append(
                f'<div style="margin-top:10px;"><a href="{html.escape(item.file_url, quote=True)}" target="_blank">{label}</a></div>'
            )
        block.append("</div>")
        parts.append("".join(block))

    parts.append("</div>")
    return "\n".join(parts)


def render_catalog_text(items: List[CatalogItem], message: Optional[str] = None) -> str:
    lines = []
    if message:
        lines.extend([message, ""])
    lines.extend(["Featured Products:", ""])
    for item in items:
        lines.append(f"- {item.title}")
        if item.description:
            lines.append(f"  {item.description}")
        if item.price is not None:
            lines.append(f"  Price: {item.price}")
        lines.append("")
    return "\n".join(lines)


def append_custom_message(html_body: Optional[str], text_body: Optional[str], message: str):
    """Append a per-step message to both bodies, escaped for html."""
    block = f'<div style="margin-top:12px;white-space:pre-wrap">{html.escape(message)}</div>'
    new_html = (html_body or "") + block
    new_text = (text_body or "") + "\n\n" + message
    return new_html, new_text


def resolve_step_content(db: Session, campaign: Campaign, step: Dict[str, Any]) -> Dict[str, Any]:
    """Build subject/bodies for a step.

    Returns dict with keys: template_id, subject, html_content, text_content.
    """
    message = step.get("message")

    if step.get("content_type") == "catalog":
        item_ids = step.get("catalog_item_ids") or []
        items = db.query(CatalogItem).filter(CatalogItem.item_id.in_(item_ids)).all() if item_ids else []
        if not items:
            raise CampaignConfigurationError("Catalog step has no catalog items")
        # Keep the order the step lists them in
        order = {item_id: i for i, item_id in enumerate(item_ids)}
        items.sort(key=lambda i: order.get(i.item_id, 0))
        return {
            "template_id": None,
            "subject": step.get("subject") or campaign.subject or "Check out our products",
            "html_content": render_catalog_html(items, message),
            "text_content": render_catalog_text(items, message),
        }

    template_id = step.get("template_id") or campaign.template_id
    template = db.query(Template).filter(Template.template_id == template_id).first() if template_id else None
    if not template:
        raise CampaignConfigurationError(f"Template {template_id} not found")

    html_body, text_body = template.html_content, template.text_content
    if message:
        html_body, text_body = append_custom_message(html_body, text_body, message)

    return {
        "template_id": template.template_id,
        "subject": step.get("subject") or template.subject or campaign.subject,
        "html_content": html_body,
        "text_content": text_body,
    }
