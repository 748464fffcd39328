from __future__ import annotations

import html
from typing import Any, Mapping

from storefront.core.config import APP_URL, STORE_NAME
from storefront.notifications.base import NotificationKind, RenderedEmail

SUBJECTS: dict[NotificationKind, str] = {
    NotificationKind.ORDER_CONFIRMATION: "Conferma ordine #{order_number} - {store_name}",
    NotificationKind.ORDER_SHIPPED: "Il tuo ordine #{order_number} è stato spedito! - {store_name}",
    NotificationKind.ORDER_CANCELLED: "Ordine #{order_number} annullato - {store_name}",
    NotificationKind.ORDER_REFUNDED: "Rimborso per ordine #{order_number} - {store_name}",
    NotificationKind.WELCOME: "Benvenuto in {store_name}!",
}

BODIES: dict[NotificationKind, str] = {
    NotificationKind.ORDER_CONFIRMATION: (
        "Ciao {customer_name}, grazie per il tuo ordine #{order_number}!\n"
        "Totale: {total}.\n"
        "Ti avviseremo quando il pacco sarà in viaggio."
    ),
    NotificationKind.ORDER_SHIPPED: (
        "Ciao {customer_name}, il tuo ordine #{order_number} è stato affidato a {carrier}.\n"
        "Numero di tracking: {tracking_number}.\n"
        "{tracking_line}"
    ),
    NotificationKind.ORDER_CANCELLED: (
        "Ciao {customer_name}, il tuo ordine #{order_number} è stato annullato.\n"
        "Se hai già pagato riceverai il rimborso sul metodo di pagamento originale."
    ),
    NotificationKind.ORDER_REFUNDED: (
        "Ciao {customer_name}, abbiamo emesso il rimborso per l'ordine #{order_number}.\n"
        "Importo: {total}. I tempi di accredito dipendono dalla tua banca."
    ),
    NotificationKind.WELCOME: (
        "Ciao {customer_name}, benvenuto in {store_name}!\n"
        "Scopri il catalogo su {app_url}."
    ),
}


def format_euro(value: Any) -> str:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    formatted = f"{amount:,.2f}"
    return "€" + formatted.replace(",", "X").replace(".", ",").replace("X", ".")


def render(kind: NotificationKind, payload: Mapping[str, Any]) -> RenderedEmail:
    if kind not in BODIES:
        raise KeyError(f"Template non valido: {kind}")

    tracking_url = payload.get("tracking_url")
    variables = {
        "store_name": STORE_NAME,
        "app_url": APP_URL,
        "customer_name": payload.get("customer_name") or "Cliente",
        "order_number": payload.get("order_number") or "",
        "total": format_euro(payload.get("total")),
        "carrier": payload.get("carrier") or "il corriere",
        "tracking_number": payload.get("tracking_number") or "-",
        "tracking_line": f"Segui la spedizione: {tracking_url}" if tracking_url else "",
    }

    subject = SUBJECTS[kind].format(**variables)
    text = BODIES[kind].format(**variables).strip()
    body_html = "".join(f"<p>{html.escape(line)}</p>" for line in text.splitlines() if line)
    return RenderedEmail(subject=subject, html=body_html, text=text)
