#!/usr/bin/env python3
"""
DVcheck command line tools.

  template   write the bulk-import spreadsheet template
  validate   check a member spreadsheet and list row errors
  import     create members from a spreadsheet in Firestore
  cards      render printable QR badges (PNG + PDF) for a spreadsheet or the member store
  decode     decode a scanned QR payload
"""

from __future__ import annotations

import os
import sys
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set

from config import BADGE_FONT_SIZE, BADGE_LINE_GAP_PX, TEMPLATE_FILENAME
from data_loaders import build_template_workbook, load_members, template_dataframe
from models import Member, MemberRecord
from qr_codec import DecodeFailure, decode_payload, encode_payload, payload_round_trips, render_qr_image
from utils import safe_filename
from validation import validate_members

DPI = 300
BACKGROUND_COLOR = (255, 255, 255)
TEXT_COLOR = (0, 0, 0)


def _log(msg: str) -> None:
    print(f"[cli] {msg}", flush=True)


class MemberQRGenerator:
    """Generates printable QR badges for members."""

    def __init__(self, data_path: Optional[str] = None, output_dir: str = "output", banner_path: Optional[str] = None):
        """
        Args:
            data_path: Path to the member spreadsheet (.xlsx/.xls/.csv); not needed for store badges
            output_dir: Directory to save generated badges
            banner_path: Optional banner image shown above the QR code
        """
        self.data_path = data_path
        self.output_dir = Path(output_dir)
        # Don't mkdir here; callers that only want bytes shouldn't get a folder.
        self.banner_path = banner_path
        self._fonts: Optional[Any] = None
        self._banner_img_cache: Optional[Any] = None

        # Badge dimensions (portrait: 2.5" x 4")
        inch_pt = 72.0
        self.card_width = 2.5 * inch_pt
        self.card_height = 4 * inch_pt

    def _get_fonts(self, font_size: int):
        """Load and cache (bold, regular) fonts once per generator instance."""
        from PIL import ImageFont

        if self._fonts is not None:
            return self._fonts

        def _load(paths: List[str]):
            for path in paths:
                if os.path.exists(path):
                    try:
                        return ImageFont.truetype(path, font_size)
                    except OSError:
                        continue
            return None

        regular = _load([
            "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
            "/System/Library/Fonts/Supplemental/Arial.ttf",
            "C:\\Windows\\Fonts\\arial.ttf",
        ]) or ImageFont.load_default(size=font_size)
        bold = _load([
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
            "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
            "C:\\Windows\\Fonts\\arialbd.ttf",
        ]) or regular
        self._fonts = (bold, regular)
        return self._fonts

    def load_banner_image(self):
        """Load and cache the banner image, or None when no banner is configured."""
        from PIL import Image

        if self._banner_img_cache is not None or not self.banner_path:
            return self._banner_img_cache
        banner_img = Image.open(self.banner_path)
        if banner_img.mode != "RGB":
            banner_img = banner_img.convert("RGB")
        self._banner_img_cache = banner_img
        return banner_img

    def read_members(self) -> List[MemberRecord]:
        """Read and validate the spreadsheet; raises ValueError listing row errors."""
        if not self.data_path:
            raise ValueError("No member spreadsheet given")
        result = load_members(self.data_path)
        report = validate_members(result.records)
        if not report.valid:
            raise ValueError("Spreadsheet has errors:\n" + "\n".join(report.messages()))
        return result.records

    def create_badge_image(self, record: MemberRecord, unique_id: Optional[str] = None):
        """
        Badge layout: optional banner on top, QR code at center, then
        name, email and (for stored members) the unique ID centered below.
        """
        from PIL import Image, ImageDraw

        width_px = int(self.card_width * DPI / 72)
        height_px = int(self.card_height * DPI / 72)
        card = Image.new("RGB", (width_px, height_px), BACKGROUND_COLOR)
        draw = ImageDraw.Draw(card)

        banner_img = self.load_banner_image()
        if banner_img is not None:
            max_h = height_px // 4
            aspect = banner_img.width / banner_img.height
            bw, bh = width_px, int(width_px / aspect)
            if bh > max_h:
                bh = max_h
                bw = int(bh * aspect)
            banner = banner_img.resize((bw, bh), Image.Resampling.LANCZOS)
            card.paste(banner, ((width_px - bw) // 2, 0))

        qr_size = int(width_px * 0.6)
        qr_img = render_qr_image(encode_payload(record.name, record.email)).convert("RGB")
        qr_img = qr_img.resize((qr_size, qr_size), Image.Resampling.NEAREST)
        qr_y = (height_px - qr_size) // 2
        card.paste(qr_img, ((width_px - qr_size) // 2, qr_y))

        font_bold, font_regular = self._get_fonts(BADGE_FONT_SIZE)
        y = qr_y + qr_size + 20
        lines = [(record.name, font_bold), (record.email, font_regular)]
        if unique_id:
            lines.append((unique_id, font_regular))
        for text, font in lines:
            bbox = draw.textbbox((0, 0), text, font=font)
            draw.text(((width_px - (bbox[2] - bbox[0])) // 2, y), text, font=font, fill=TEXT_COLOR)
            y += BADGE_LINE_GAP_PX

        draw.rounded_rectangle(
            [(1, 1), (width_px - 2, height_px - 2)],
            radius=int(0.08 * DPI),
            outline=TEXT_COLOR,
            width=2,
        )
        return card

    def create_pdf_bytes(self, card_img) -> bytes:
        """Create a one-page PDF (bytes) from a badge image."""
        from reportlab.lib.utils import ImageReader
        from reportlab.pdfgen import canvas

        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=(self.card_width, self.card_height))
        c.drawImage(ImageReader(card_img.convert("RGB")), 0, 0, width=self.card_width, height=self.card_height)
        c.showPage()
        c.save()
        return buf.getvalue()

    @staticmethod
    def _badge_stem(name: str, used: Set[str]) -> str:
        """File stem for a badge; repeated names get _2, _3, ... so no badge overwrites another."""
        base = safe_filename(name, "png")[: -len(".png")]
        stem, n = base, 1
        while stem.lower() in used:
            n += 1
            stem = f"{base}_{n}"
        used.add(stem.lower())
        return stem

    def _write_badges(self, items: List[tuple]) -> int:
        """items: (record, unique_id or None). Returns the number of badges written."""
        self.output_dir.mkdir(exist_ok=True, parents=True)
        used: Set[str] = set()
        written = 0
        for i, (record, unique_id) in enumerate(items, 1):
            if not payload_round_trips(record.name):
                _log(f"Warning: name '{record.name}' contains a comma; scanned badges will decode a shortened name")
            label = f"{record.name} ({unique_id})" if unique_id else record.name
            _log(f"Generating badge {i}/{len(items)}: {label}")
            try:
                card = self.create_badge_image(record, unique_id)
                base = self.output_dir / f"{self._badge_stem(record.name, used)}.png"
                card.save(base, format="PNG")
                base.with_suffix(".pdf").write_bytes(self.create_pdf_bytes(card))
                written += 1
            except (OSError, ValueError) as e:
                _log(f"Error generating badge for {record.name}: {e}")
                continue
        _log(f"Completed! Generated {written} badges in '{self.output_dir}'")
        return written

    def generate_all(self) -> int:
        """
        Badges for the spreadsheet rows. These members have no stored ID yet,
        so the badge carries the QR code, name and email only.
        """
        records = self.read_members()
        _log(f"Found {len(records)} valid members")
        return self._write_badges([(record, None) for record in records])

    def generate_from_members(self, members: Iterable[Member]) -> int:
        """Badges for stored members, printing the unique ID issued at creation."""
        items = [(m.record, m.unique_id or None) for m in members]
        _log(f"Found {len(items)} stored members")
        return self._write_badges(items)


def _firestore_settings_from_env() -> dict:
    settings = {
        "project_id": os.environ.get("FIRESTORE_PROJECT_ID", ""),
        "api_key": os.environ.get("FIRESTORE_API_KEY"),
        "id_token": os.environ.get("FIRESTORE_ID_TOKEN"),
    }
    if not settings["project_id"]:
        raise ValueError("Set FIRESTORE_PROJECT_ID (and FIRESTORE_API_KEY or FIRESTORE_ID_TOKEN) to import members.")
    return settings


def cmd_template(args) -> int:
    out = Path(args.output)
    if out.suffix.lower() == ".csv":
        template_dataframe().to_csv(out, index=False)
    else:
        out.write_bytes(build_template_workbook(use_formulas=args.formulas))
    _log(f"Wrote template to {out}")
    return 0


def cmd_validate(args) -> int:
    result = load_members(args.data)
    report = validate_members(result.records)
    _log(f"Loaded {result.stats['loaded_rows']} members (source rows: {result.stats['source_rows']})")
    if report.valid:
        _log("No errors found")
        return 0
    for message in report.messages():
        print(message)
    return 1


def cmd_import(args) -> int:
    from repository import firestore_repositories
    from services import bulk_create_members, summary_message

    result = load_members(args.data)
    report = validate_members(result.records)
    if not report.valid:
        for message in report.messages():
            print(message)
        _log("Nothing imported: fix the errors above first")
        return 1
    members_repo, _ = firestore_repositories(_firestore_settings_from_env())
    outcome = bulk_create_members(members_repo, result.records)
    print(summary_message(outcome))
    return 0 if outcome.failed == 0 else 1


def cmd_cards(args) -> int:
    generator = MemberQRGenerator(args.data, args.output, banner_path=args.banner)
    if args.from_store:
        from repository import firestore_repositories
        from services import list_members

        members_repo, _ = firestore_repositories(_firestore_settings_from_env())
        generator.generate_from_members(list_members(members_repo))
        return 0
    if not args.data:
        raise ValueError("Give a member spreadsheet or use --from-store")
    generator.generate_all()
    return 0


def cmd_decode(args) -> int:
    decoded = decode_payload(args.payload)
    if isinstance(decoded, DecodeFailure):
        print(decoded.reason)
        return 1
    print(f"Name: {decoded.name}")
    print(f"Email: {decoded.email}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="DVcheck member tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("template", help="Write the bulk-import template")
    p.add_argument("-o", "--output", default=TEMPLATE_FILENAME, help=f"Output .xlsx or .csv (default: {TEMPLATE_FILENAME})")
    p.add_argument("--formulas", action="store_true", help="Write live Excel password formulas instead of computed passwords")
    p.set_defaults(func=cmd_template)

    p = sub.add_parser("validate", help="Validate a member spreadsheet")
    p.add_argument("data", help="Path to Excel (.xlsx) or CSV with member data")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("import", help="Create members in Firestore from a spreadsheet")
    p.add_argument("data", help="Path to Excel (.xlsx) or CSV with member data")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("cards", help="Generate QR badges (PNG + PDF)")
    p.add_argument("data", nargs="?", default=None, help="Path to Excel (.xlsx) or CSV with member data")
    p.add_argument("--from-store", action="store_true", help="Badges for members stored in Firestore, with their member IDs")
    p.add_argument("-o", "--output", default="output", help="Output directory (default: output)")
    p.add_argument("-b", "--banner", default=None, help="Optional banner image")
    p.set_defaults(func=cmd_cards)

    p = sub.add_parser("decode", help="Decode a scanned QR payload")
    p.add_argument("payload", help='Payload text, e.g. "Name: Jane Doe, Email: jane@example.com"')
    p.set_defaults(func=cmd_decode)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, ImportError, OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
