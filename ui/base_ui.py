"""기본 UI 컴포넌트와 유틸리티 클래스"""

import tkinter as tk
from tkinter import ttk, messagebox
from typing import Optional
from abc import ABC, abstractmethod


class BaseUIComponent(ABC):
    """UI 컴포넌트의 기본 클래스"""

    def __init__(self, parent: tk.Widget):
        self.parent = parent
        self.frame = None

    @abstractmethod
    def create_widgets(self):
        """위젯들을 생성합니다."""
        pass

    @abstractmethod
    def setup_layout(self):
        """레이아웃을 설정합니다."""
        pass

    def build(self) -> "BaseUIComponent":
        self.create_widgets()
        self.setup_layout()
        return self


class UIUtils:
    """UI 관련 유틸리티 함수들"""

    @staticmethod
    def set_enabled(widget: tk.Widget, enabled: bool):
        """버튼/입력창의 활성 상태를 바꿉니다."""
        widget['state'] = tk.NORMAL if enabled else tk.DISABLED

    @staticmethod
    def show_error_message(title: str, message: str, parent: Optional[tk.Widget] = None):
        """에러 메시지를 표시합니다."""
        messagebox.showerror(title, message, parent=parent)

    @staticmethod
    def ask_yes_no(title: str, message: str, parent: Optional[tk.Widget] = None) -> bool:
        """예/아니오 확인 대화상자를 표시합니다."""
        return messagebox.askyesno(title, message, parent=parent)


class StyleManager:
    """UI 스타일을 관리하는 클래스"""

    COLOR_BG = "#F5F7FA"
    COLOR_TEXT = "#343A40"
    COLOR_TEXT_SUBTLE = "#6C757D"
    COLOR_PRIMARY = "#0D6EFD"
    COLOR_SUCCESS = "#28A745"
    COLOR_DEFECT = "#DC3545"
    COLOR_IDLE = "#FFC107"

    def __init__(self, font_family: str = 'Malgun Gothic', scale_factor: float = 1.0):
        self.style = ttk.Style()
        self.font_family = font_family
        self.scale_factor = scale_factor

    def font(self, size: int, weight: str = 'normal') -> tuple:
        return (self.font_family, int(size * self.scale_factor), weight)

    def setup_default_styles(self):
        """기본 스타일들을 설정합니다."""
        self.style.configure('TFrame', background=self.COLOR_BG)
        self.style.configure('TLabel', background=self.COLOR_BG, foreground=self.COLOR_TEXT, font=self.font(12))
        self.style.configure('Title.TLabel', font=self.font(22, 'bold'))
        self.style.configure('Stopwatch.TLabel', background=self.COLOR_BG, font=self.font(72, 'bold'))
        self.style.configure('Stopwatch.Paused.TLabel', background=self.COLOR_BG,
                             foreground=self.COLOR_TEXT_SUBTLE, font=self.font(72, 'bold'))
        self.style.configure('TButton', font=self.font(14, 'bold'), padding=(16, 10))
        self.style.configure('Start.TButton', foreground=self.COLOR_PRIMARY)
        self.style.configure('Pass.TButton', foreground=self.COLOR_SUCCESS)
        self.style.configure('Leak.TButton', foreground=self.COLOR_DEFECT)

        # 단계 표시 스타일
        self.style.configure('Step.TLabel', foreground=self.COLOR_TEXT_SUBTLE, font=self.font(12))
        self.style.configure('Step.Current.TLabel', foreground=self.COLOR_PRIMARY, font=self.font(12, 'bold'))
        self.style.configure('Step.Done.TLabel', foreground=self.COLOR_SUCCESS, font=self.font(12))

        # 상태 표시 스타일
        self.style.configure('Status.Good.TLabel', foreground=self.COLOR_SUCCESS)
        self.style.configure('Status.Error.TLabel', foreground=self.COLOR_DEFECT)
        self.style.configure('Status.Warning.TLabel', foreground=self.COLOR_IDLE)
