from __future__ import annotations

from urllib.parse import quote

CARRIER_TRACKING_URLS = {
    "poste": "https://www.poste.it/cerca/index.html#/risultati-spedizioni/{code}",
    "sda": "https://www.sda.it/wps/portal/Servizi_online/dettaglio-spedizione?locale=it&tracing.letteraVettura={code}",
    "dhl": "https://www.dhl.com/it-it/home/tracciabilita.html?tracking-id={code}",
    "ups": "https://www.ups.com/track?loc=it_IT&tracknum={code}",
    "gls": "https://www.gls-italy.com/it/servizi-online/ricerca-spedizioni?match={code}",
    "brt": "https://vas.brt.it/vas/sped_det_show.hsm?referer=sped_numspe_par.htm&Nspediz={code}",
    "bartolini": "https://vas.brt.it/vas/sped_det_show.hsm?referer=sped_numspe_par.htm&Nspediz={code}",
}


def build_tracking_url(carrier: str, tracking_number: str) -> str | None:
    carrier_key = (carrier or "").strip().lower()
    code = (tracking_number or "").strip()
    if not carrier_key or not code:
        return None
    for name, pattern in CARRIER_TRACKING_URLS.items():
        if name in carrier_key:
            return pattern.format(code=quote(code, safe=""))
    return None
