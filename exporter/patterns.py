"""Multilingual name patterns for the controls we look for.

Patterns are handed to Playwright (``get_by_role(name=...)``,
``get_by_text(...)``), which re-compiles them as JavaScript regexes, so only
syntax shared by both engines is used here: no inline flags, no lookbehind.
"""

from __future__ import annotations

import re

EXPORT_WORDS = (
    "Export", "Download",
    "ส่งออก", "ดาวน์โหลด",                 # Thai
    "Exportar", "Descargar", "Baixar",     # es / pt
    "Exporter", "Télécharger",             # fr
    "Exportieren", "Herunterladen",        # de
    "Экспорт", "Скачать",                  # ru
    "Ekspor", "Unduh",                     # id
    "エクスポート", "ダウンロード",          # ja
    "내보내기", "다운로드",                  # ko
    "导出", "下载", "匯出", "下載",          # zh
    "تصدير", "تنزيل",                      # ar
    "Xuất", "Tải xuống",                   # vi
    "Dışa aktar", "İndir",                 # tr
)

MORE_WORDS = (
    "More", "More actions", "Actions", "Options",
    "เพิ่มเติม", "การดำเนินการ",
    "Más", "Acciones", "Mais", "Ações", "Plus", "Mehr", "Aktionen",
    "Ещё", "Еще", "Действия", "Lainnya", "その他", "더보기", "更多",
    "المزيد", "Thêm",
)

ANCHOR_WORDS = (
    "Import", "Add item", "นำเข้า", "เพิ่มสินค้า",
    "Importar", "Importer", "Importieren", "Импорт", "Impor",
    "インポート", "가져오기", "导入", "匯入", "استيراد",
)

CONFIRM_WORDS = EXPORT_WORDS + (
    "OK", "Confirm", "Continue", "Save",
    "ตกลง", "ยืนยัน", "Confirmar", "Confirmer", "Bestätigen",
)

DISMISS_WORDS = (
    "Accept", "Accept all", "I agree", "Got it", "Close",
    "ตกลง", "ยอมรับ", "ปิด",
)

DESTRUCTIVE_WORDS = (
    "Delete", "Remove", "ลบ", "Eliminar", "Excluir", "Supprimer", "Löschen",
    "Удалить", "Hapus", "削除", "삭제", "删除", "حذف", "Xóa", "Sil",
)


def _alternation(words: tuple[str, ...]) -> str:
    return "|".join(re.escape(w).replace("\\ ", " ") for w in words)


# Free text: the word anywhere in the text.
EXPORT_PATTERN = re.compile(f"({_alternation(EXPORT_WORDS)})", re.I)

# Accessible names: the word leads and little else follows ("Export CSV").
EXPORT_NAME = re.compile(
    f"^[^A-Za-z0-9]*({_alternation(EXPORT_WORDS)})[^\\n]{{0,24}}$", re.I,
)

MORE_NAME = re.compile(f"^\\s*({_alternation(MORE_WORDS)})\\s*$", re.I)
ANCHOR_NAME = re.compile(f"^[^A-Za-z0-9]*({_alternation(ANCHOR_WORDS)})", re.I)
CONFIRM_NAME = re.compile(f"^\\s*({_alternation(CONFIRM_WORDS)})\\s*$", re.I)
DISMISS_NAME = re.compile(f"^\\s*({_alternation(DISMISS_WORDS)})\\s*$", re.I)
DESTRUCTIVE_PATTERN = re.compile(_alternation(DESTRUCTIVE_WORDS), re.I)

# Format choices in a confirmation dialog, most preferred first.
FORMAT_CHOICES = (
    re.compile("csv", re.I),
    re.compile("(excel|xlsx?|spreadsheet)", re.I),
)

# Overflow ("kebab") buttons that carry no readable name.
OVERFLOW_SELECTORS = (
    "button[aria-label*='more' i]",
    "button[aria-haspopup='menu']",
    "button[aria-haspopup='true']",
    "button:has([data-icon='more'])",
    "[data-testid*='kebab']",
    "[data-testid*='overflow']",
    "button:has(md-icon:has-text('more_vert'))",
)

# Regions a menu or overflow button reveals.
MENU_REGION_SELECTOR = (
    "[role='menu'], [role='listbox'], .cdk-overlay-pane, .md-open-menu-container, "
    "md-menu-content, .dropdown-menu.show, .dropdown-menu.open, [class*='popover']"
)

DIALOG_SELECTOR = (
    "[role='dialog'], [role='alertdialog'], .modal, md-dialog, "
    ".cdk-overlay-container [role='dialog']"
)


def is_export_label(text: str | None) -> bool:
    """True when ``text`` reads like an export/download control."""
    return bool(text) and EXPORT_PATTERN.search(text) is not None
