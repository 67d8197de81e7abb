"""합격/누설 입력 대화상자"""

import tkinter as tk
from tkinter import ttk, simpledialog
from typing import List, Optional

from core.models import LeakReport, LEAK_REASON_OTHERS
from core.validators import validate_leak_report
from utils.exceptions import ValidationError


def ask_pass_remark(parent: tk.Widget) -> Optional[str]:
    """합격 비고를 묻습니다. 취소하면 None, 빈 입력은 빈 문자열."""
    remark = simpledialog.askstring("PASS", "비고 (선택 사항):", parent=parent)
    return None if remark is None else remark.strip()


class LeakReasonDialog(tk.Toplevel):
    """누설 사유 선택 창. 'Others'를 고르면 비고 입력란이 나타나며 필수가 됩니다."""

    def __init__(self, parent: tk.Widget, reasons: List[str]):
        super().__init__(parent)
        self.title("LEAK")
        self.transient(parent)
        self.resizable(False, False)
        self.result: Optional[LeakReport] = None

        body = ttk.Frame(self, padding=20)
        body.pack(fill="both", expand=True)

        ttk.Label(body, text="누설 사유").pack(anchor="w")
        self.reason_var = tk.StringVar()
        self.reason_box = ttk.Combobox(body, textvariable=self.reason_var, values=reasons,
                                       state="readonly", width=30)
        self.reason_box.pack(fill="x", pady=(2, 10))
        self.reason_box.bind('<<ComboboxSelected>>', self._on_reason_change)

        self.remark_label = ttk.Label(body, text="비고 (Others 선택 시 필수)")
        self.remark_entry = ttk.Entry(body, width=34)

        self.status_label = ttk.Label(body, text="", style='Status.Error.TLabel')
        self.status_label.pack(anchor="w", pady=(4, 8))

        buttons = ttk.Frame(body)
        buttons.pack(fill="x")
        ttk.Button(buttons, text="취소", command=self._on_cancel).pack(side="right")
        ttk.Button(buttons, text="확인", command=self._on_confirm).pack(side="right", padx=(0, 8))

        self.protocol("WM_DELETE_WINDOW", self._on_cancel)
        self.bind('<Escape>', lambda e: self._on_cancel())
        self.grab_set()
        self.reason_box.focus_set()

    def _on_reason_change(self, event=None):
        if self.reason_var.get() == LEAK_REASON_OTHERS:
            self.remark_label.pack(anchor="w", before=self.status_label)
            self.remark_entry.pack(fill="x", pady=(2, 4), before=self.status_label)
            self.remark_entry.focus_set()
        else:
            self.remark_entry.delete(0, 'end')
            self.remark_label.pack_forget()
            self.remark_entry.pack_forget()

    def _on_confirm(self):
        try:
            self.result = validate_leak_report(self.reason_var.get(), self.remark_entry.get())
        except ValidationError as e:
            self.status_label.config(text=str(e))
            return
        self.destroy()

    def _on_cancel(self):
        self.result = None
        self.destroy()


def ask_leak_report(parent: tk.Widget, reasons: List[str]) -> Optional[LeakReport]:
    """누설 사유를 입력받습니다. 취소하면 None."""
    dialog = LeakReasonDialog(parent, reasons)
    parent.wait_window(dialog)
    return dialog.result
