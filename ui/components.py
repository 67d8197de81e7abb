"""특화된 UI 컴포넌트들"""

import tkinter as tk
from tkinter import ttk
from typing import List, Dict, Optional, Callable, Tuple
from .base_ui import BaseUIComponent, UIUtils


class ScannerInputComponent(BaseUIComponent):
    """QR 스캐너(키보드 웨지) 입력을 처리하는 컴포넌트"""

    def __init__(self, parent: tk.Widget, title: str):
        super().__init__(parent)
        self.title = title
        self.entry: Optional[ttk.Entry] = None
        self.status_label: Optional[ttk.Label] = None

    def create_widgets(self):
        """스캐너 입력 관련 위젯들을 생성합니다."""
        self.frame = ttk.Frame(self.parent)

        input_frame = ttk.Frame(self.frame)
        input_frame.pack(fill="x", padx=5, pady=5)

        ttk.Label(input_frame, text=self.title).pack(side="left")
        self.entry = ttk.Entry(input_frame, font=('Arial', 14))
        self.entry.pack(side="left", fill="x", expand=True, padx=(5, 0))

        self.status_label = ttk.Label(self.frame, text="스캔 대기 중...", style='Status.Good.TLabel')
        self.status_label.pack(pady=2, anchor="w")

    def setup_layout(self):
        """레이아웃을 설정합니다."""
        self.frame.pack(fill="x", padx=10, pady=5)

    def bind_scan_event(self, callback: Callable[[str], None]):
        """스캔 이벤트(Enter)를 바인딩합니다."""
        def on_scan(event):
            payload = self.entry.get().strip()
            self.entry.delete(0, 'end')
            if payload:
                callback(payload)

        self.entry.bind('<Return>', on_scan)

    def set_status(self, message: str, status_type: str = "normal"):
        """상태 메시지를 설정합니다."""
        if self.status_label:
            style = {'error': 'Status.Error.TLabel', 'warning': 'Status.Warning.TLabel'}.get(
                status_type, 'Status.Good.TLabel')
            self.status_label.config(text=message, style=style)

    def set_enabled(self, enabled: bool):
        if self.entry:
            UIUtils.set_enabled(self.entry, enabled)

    def clear_input(self):
        """입력 필드를 비웁니다."""
        if self.entry:
            self.entry.delete(0, 'end')

    def focus_input(self):
        """입력 필드에 포커스를 설정합니다."""
        if self.entry:
            self.entry.focus_set()


class IdentityCardComponent(BaseUIComponent):
    """스캔한 작업자/용기 정보를 '항목: 값' 형태로 보여주는 카드"""

    def __init__(self, parent: tk.Widget, title: str, rows: List[Tuple[str, str]]):
        super().__init__(parent)
        self.title = title
        self.rows = rows
        self.value_labels: Dict[str, ttk.Label] = {}

    def create_widgets(self):
        self.frame = ttk.LabelFrame(self.parent, text=self.title, padding=10)
        for index, (key, label_text) in enumerate(self.rows):
            ttk.Label(self.frame, text=label_text).grid(row=index, column=0, sticky="w", padx=(0, 12), pady=2)
            value = ttk.Label(self.frame, text="-", font=('Arial', 12, 'bold'))
            value.grid(row=index, column=1, sticky="w", pady=2)
            self.value_labels[key] = value

    def setup_layout(self):
        self.frame.pack(fill="x", padx=10, pady=5)

    def update_values(self, values: Dict[str, object]):
        for key, label in self.value_labels.items():
            value = values.get(key)
            label.config(text="-" if value in (None, "") else str(value))


class StopwatchComponent(BaseUIComponent):
    """HH:MM:SS 스톱워치 표시"""

    def __init__(self, parent: tk.Widget):
        super().__init__(parent)
        self.value_label: Optional[ttk.Label] = None

    def create_widgets(self):
        self.frame = ttk.Frame(self.parent)
        self.value_label = ttk.Label(self.frame, text="00:00:00", style='Stopwatch.TLabel', anchor="center")
        self.value_label.pack(fill="x")

    def setup_layout(self):
        self.frame.pack(fill="x", padx=10, pady=20)

    def show(self, text: str, paused: bool = False):
        if self.value_label and self.value_label.winfo_exists():
            self.value_label.config(text=text, style='Stopwatch.Paused.TLabel' if paused else 'Stopwatch.TLabel')


class StepIndicatorComponent(BaseUIComponent):
    """1 작업자 → 2 용기 → 3 시험 단계 표시"""

    def __init__(self, parent: tk.Widget, steps: List[str]):
        super().__init__(parent)
        self.steps = steps
        self.step_labels: List[ttk.Label] = []

    def create_widgets(self):
        self.frame = ttk.Frame(self.parent)
        for index, name in enumerate(self.steps):
            label = ttk.Label(self.frame, text=f"{index + 1}. {name}", style='Step.TLabel')
            label.pack(side="left", padx=12)
            self.step_labels.append(label)

    def setup_layout(self):
        self.frame.pack(fill="x", padx=10, pady=(10, 0))

    def set_current(self, current_index: int):
        for index, label in enumerate(self.step_labels):
            if index < current_index:
                label.config(style='Step.Done.TLabel')
            elif index == current_index:
                label.config(style='Step.Current.TLabel')
            else:
                label.config(style='Step.TLabel')
