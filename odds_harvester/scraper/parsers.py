"""HTML parsers for the odds pages and the race calendar."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import structlog
from bs4 import BeautifulSoup, Tag

from odds_harvester.scraper.schemas import BetType, CombinationQuote, WinPlaceQuote

log = structlog.get_logger()

_FRAME_IMG = re.compile(r"waku/(\d+)\.png")
_MEETING = re.compile(r"(\d+)回(.+?)(\d+)日")
_START_TIME = re.compile(r"(\d{1,2})時(\d{1,2})分")

POST_TIME_PASSED = "発走済"


def _number(text: str) -> float | None:
    cleaned = text.strip().replace(",", "")
    if not cleaned or cleaned == "-":
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _int(text: str) -> int | None:
    match = re.match(r"\s*(\d+)", text)
    return int(match.group(1)) if match else None


def _first_cell_text(row: Tag, name: str) -> str:
    cell = row.find(name)
    return cell.get_text(strip=True) if cell else ""


# ── Win / place ─────────────────────────────────────────────────────


def parse_win_place(html: str, race_id: int, captured_at: datetime) -> list[WinPlaceQuote]:
    soup = BeautifulSoup(html, "html.parser")
    quotes: list[WinPlaceQuote] = []
    seen: set[int] = set()
    current_frame = 0

    for row in soup.select("table.basic.narrow-xy.tanpuku tr"):
        num_cell = row.select_one("td.num")
        if num_cell is None:
            continue
        number = _int(num_cell.get_text())
        if number is None or number in seen:
            continue

        # The frame cell spans several rows; later rows inherit it.
        waku_cell = row.select_one("td.waku")
        if waku_cell is not None:
            img = waku_cell.find("img")
            match = _FRAME_IMG.search(img.get("src", "")) if img else None
            current_frame = int(match.group(1)) if match else 0
        if current_frame == 0:
            log.warning("frame_missing", race_id=race_id, horse_number=number)
            continue

        name_link = row.select_one("td.horse a")
        name = name_link.get_text(strip=True) if name_link else ""
        scratched = row.select_one("td.odds_tan_cancel") is not None

        win_odds = None
        place_min = place_max = None
        if not scratched:
            tan_cell = row.select_one("td.odds_tan")
            win_odds = _number(tan_cell.get_text()) if tan_cell else None
            fuku_cell = row.select_one("td.odds_fuku")
            if fuku_cell is not None:
                parts = fuku_cell.get_text(strip=True).split("-")
                place_min = _number(parts[0])
                place_max = _number(parts[1]) if len(parts) > 1 else place_min

        quotes.append(
            WinPlaceQuote(
                race_id=race_id,
                horse_number=number,
                horse_name=name,
                frame=current_frame,
                win_odds=win_odds,
                place_min=place_min,
                place_max=place_max,
                captured_at=captured_at,
                scratched=scratched,
            )
        )
        seen.add(number)

    quotes.sort(key=lambda q: (q.frame, q.horse_number))
    return quotes


# ── Pair / triple tables ────────────────────────────────────────────


def _pair_tables(
    soup: BeautifulSoup,
    selector: str,
    bet_type: BetType,
    race_id: int,
    captured_at: datetime,
    ordered: bool,
    band: bool = False,
) -> list[CombinationQuote]:
    """Tables captioned with the first runner, one row per second runner."""
    quotes: list[CombinationQuote] = []
    for table in soup.select(selector):
        caption = table.find("caption")
        first = _int(caption.get_text()) if caption else None
        if first is None:
            log.warning("caption_unparsed", bet_type=bet_type.value, race_id=race_id)
            continue
        for row in table.select("tbody tr"):
            second = _int(_first_cell_text(row, "th"))
            if second is None:
                continue
            quote = _row_quote(row, bet_type, race_id, (first, second), captured_at, ordered, band)
            if quote is not None:
                quotes.append(quote)
    return quotes


def _row_quote(
    row: Tag,
    bet_type: BetType,
    race_id: int,
    participants: tuple[int, ...],
    captured_at: datetime,
    ordered: bool,
    band: bool,
) -> CombinationQuote | None:
    if band:
        cell = row.select_one("td.odds")
        if cell is None:
            return None
        lo = cell.select_one("span.min")
        hi = cell.select_one("span.max")
        odds_min = _number(lo.get_text()) if lo else None
        odds_max = _number(hi.get_text()) if hi else None
        if odds_min is None or odds_max is None:
            return None
        return CombinationQuote(
            race_id=race_id,
            bet_type=bet_type,
            participants=participants,
            captured_at=captured_at,
            odds_min=odds_min,
            odds_max=odds_max,
            ordered=ordered,
        )

    odds = _number(_first_cell_text(row, "td"))
    if odds is None:
        return None
    return CombinationQuote(
        race_id=race_id,
        bet_type=bet_type,
        participants=participants,
        captured_at=captured_at,
        odds=odds,
        ordered=ordered,
    )


def parse_bracket_quinella(
    html: str, race_id: int, captured_at: datetime
) -> list[CombinationQuote]:
    soup = BeautifulSoup(html, "html.parser")
    quotes: list[CombinationQuote] = []
    for table in soup.select("table.basic.narrow-xy.waku"):
        caption = table.find("caption")
        classes = caption.get("class", []) if caption else []
        frame1 = next((_int(c[4:]) for c in classes if c.startswith("waku")), None)
        if frame1 is None:
            continue
        for row in table.find_all("tr"):
            frame2 = _int(_first_cell_text(row, "th"))
            if frame2 is None:
                continue
            quote = _row_quote(
                row, BetType.BRACKET_QUINELLA, race_id, (frame1, frame2), captured_at,
                ordered=False, band=False,
            )
            if quote is not None:
                quotes.append(quote)
    return quotes


def parse_quinella(html: str, race_id: int, captured_at: datetime) -> list[CombinationQuote]:
    soup = BeautifulSoup(html, "html.parser")
    return _pair_tables(
        soup, "table.basic.narrow-xy.umaren", BetType.QUINELLA, race_id, captured_at, ordered=False
    )


def parse_quinella_place(
    html: str, race_id: int, captured_at: datetime
) -> list[CombinationQuote]:
    soup = BeautifulSoup(html, "html.parser")
    return _pair_tables(
        soup, "table.basic.narrow-xy.wide", BetType.QUINELLA_PLACE, race_id, captured_at,
        ordered=False, band=True,
    )


def parse_exacta(html: str, race_id: int, captured_at: datetime) -> list[CombinationQuote]:
    soup = BeautifulSoup(html, "html.parser")
    return _pair_tables(
        soup, "table.basic.narrow-xy.umatan", BetType.EXACTA, race_id, captured_at, ordered=True
    )


def parse_trio(html: str, race_id: int, captured_at: datetime) -> list[CombinationQuote]:
    """Tables captioned ``"1-2"``, one row per third runner."""
    soup = BeautifulSoup(html, "html.parser")
    quotes: list[CombinationQuote] = []
    for table in soup.select("table.basic.narrow-xy.fuku3"):
        caption = table.find("caption")
        parts = caption.get_text(strip=True).split("-") if caption else []
        first = _int(parts[0]) if len(parts) >= 2 else None
        second = _int(parts[1]) if len(parts) >= 2 else None
        if first is None or second is None:
            log.warning("caption_unparsed", bet_type=BetType.TRIO.value, race_id=race_id)
            continue
        for row in table.select("tbody tr"):
            third = _int(_first_cell_text(row, "th"))
            if third is None:
                continue
            quote = _row_quote(
                row, BetType.TRIO, race_id, (first, second, third), captured_at,
                ordered=False, band=False,
            )
            if quote is not None:
                quotes.append(quote)
    return quotes


def parse_trifecta(html: str, race_id: int, captured_at: datetime) -> list[CombinationQuote]:
    """First and second place come from the enclosing list item's headers."""
    soup = BeautifulSoup(html, "html.parser")
    quotes: list[CombinationQuote] = []
    for table in soup.select("table.basic.narrow-xy.tan3"):
        container = table.find_parent("li")
        lines = container.select("div.p_line") if container else []
        if len(lines) < 2:
            continue
        first = _int(_div_num(lines[0]))
        second = _int(_div_num(lines[1]))
        if first is None or second is None:
            log.warning("trifecta_header_unparsed", race_id=race_id)
            continue
        for row in table.select("tbody tr"):
            header = row.select_one('th[scope="row"]')
            third = _int(header.get_text()) if header else None
            if third is None:
                continue
            quote = _row_quote(
                row, BetType.TRIFECTA, race_id, (first, second, third), captured_at,
                ordered=True, band=False,
            )
            if quote is not None:
                quotes.append(quote)
    return quotes


def _div_num(line: Tag) -> str:
    num = line.select_one("div.num")
    return num.get_text(strip=True) if num else ""


# ── Race calendar ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Meeting:
    label: str  # link text, e.g. "2回東京4日"
    meeting: int
    venue: str
    day: int
    race_date: date


@dataclass(frozen=True)
class RaceRow:
    name: str
    race_number: int
    is_grade: bool
    time_text: str

    @property
    def post_time_passed(self) -> bool:
        return self.time_text == POST_TIME_PASSED


def _date_label(day: date) -> str:
    return f"{day.month}月{day.day}日"


def parse_meetings(html: str, today: date) -> list[Meeting]:
    """Meetings held today or tomorrow, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    tomorrow = today + timedelta(days=1)
    today_label, tomorrow_label = _date_label(today), _date_label(tomorrow)

    meetings: list[Meeting] = []
    for panel in soup.select('.thisweek .panel.no-padding.no-border[class*="mt"]'):
        header = panel.select_one(".sub_header")
        header_text = header.get_text(strip=True) if header else ""
        if tomorrow_label in header_text:
            race_date = tomorrow
        elif today_label in header_text:
            race_date = today
        else:
            continue

        for link in panel.select(".link_list a"):
            text = link.get_text(strip=True)
            match = _MEETING.search(text)
            if not match:
                log.warning("meeting_unparsed", text=text)
                continue
            meeting, venue, day = match.groups()
            meetings.append(
                Meeting(
                    label=f"{int(meeting)}回{venue}{int(day)}日",
                    meeting=int(meeting),
                    venue=venue,
                    day=int(day),
                    race_date=race_date,
                )
            )
    return meetings


def parse_race_rows(html: str) -> list[RaceRow]:
    soup = BeautifulSoup(html, "html.parser")
    rows: list[RaceRow] = []
    for tr in soup.find_all("tr"):
        name_cell = tr.select_one(".race_name")
        num_img = tr.select_one(".race_num img")
        if name_cell is None or num_img is None:
            continue
        number = _int(num_img.get("alt", "").replace("レース", ""))
        if number is None:
            continue
        stakes = name_cell.select_one(".stakes")
        grade_img = name_cell.select_one(".grade_icon img")
        time_cell = tr.select_one(".time")
        rows.append(
            RaceRow(
                name=stakes.get_text(strip=True) if stakes else "",
                race_number=number,
                is_grade="icon_grade_s_g" in (grade_img.get("src", "") if grade_img else ""),
                time_text=time_cell.get_text(strip=True) if time_cell else "",
            )
        )
    return rows


def parse_start_time(text: str) -> tuple[int, int] | None:
    """``"15時45分"`` → ``(15, 45)``."""
    match = _START_TIME.search(text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
