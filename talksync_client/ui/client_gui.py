#!/usr/bin/env python3
"""
Client GUI - PyQt6 Chat Window

This module puts a window in front of ChatRelayClient.
Features:
- Name prompt before joining
- Header with connection status, online count and leave button
- Message list with inline images
- Typing indicator
- Online users panel
- Message input with image attach
"""

import asyncio
import html
import sys
import threading
from typing import List, Optional

from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QLabel,
    QPushButton, QLineEdit, QTextBrowser, QListWidget, QInputDialog,
    QMessageBox, QFileDialog
)
from PyQt6.QtCore import QThread, QUrl, pyqtSignal
from PyQt6.QtGui import QFont, QTextDocument

from talksync_common.constants import DEFAULT_HOST, EventTypes, MAX_NAME_LENGTH, MAX_TEXT_LENGTH
from talksync_common.protocol_definitions import Message, normalize_name
from talksync_client.chat.chat_client import (
    UPDATE_STATE, UPDATE_HISTORY, UPDATE_MESSAGE, UPDATE_ONLINE,
    UPDATE_TYPING, UPDATE_PRESENCE, UPDATE_NOTICE
)
from talksync_client.chat.connection_state import ConnectionState
from talksync_client.main_client import ChatRelayClient
from talksync_client.ui.media import compress_image, decode_image
from talksync_client.utils.config import ClientConfig
from talksync_client.utils.logger import logger


STATUS_TEXT = {
    ConnectionState.CONNECTING: ("Connecting...", "#F1C40F"),
    ConnectionState.CONNECTED: ("Live", "#2ECC71"),
    ConnectionState.DISCONNECTED: ("Disconnected", "#E74C3C"),
    ConnectionState.OFFLINE_FALLBACK: ("Demo mode", "#E67E22"),
}


def typing_text(names: List[str]) -> str:
    """Human-readable typing indicator."""
    if not names:
        return ""
    if len(names) == 1:
        return f"{names[0]} is typing..."
    if len(names) == 2:
        return f"{names[0]} and {names[1]} are typing..."
    return f"{len(names)} people are typing..."


# ============================================================================
# HEADER
# ============================================================================

class ChatHeader(QWidget):
    """Title, live/offline status, online count and leave button."""

    leave_clicked = pyqtSignal()

    def __init__(self):
        super().__init__()
        layout = QHBoxLayout()
        layout.setContentsMargins(10, 5, 10, 5)

        title = QLabel("Chat Room")
        title.setFont(QFont("Arial", 14, QFont.Weight.Bold))
        layout.addWidget(title)

        self.status_label = QLabel()
        layout.addWidget(self.status_label)

        self.online_label = QLabel("0 online")
        self.online_label.setStyleSheet("color: #95A5A6;")
        layout.addWidget(self.online_label)

        layout.addStretch()

        leave_btn = QPushButton("Leave")
        leave_btn.clicked.connect(self.leave_clicked.emit)
        layout.addWidget(leave_btn)

        self.setLayout(layout)
        self.set_state(ConnectionState.CONNECTING)

    def set_state(self, state: ConnectionState):
        text, color = STATUS_TEXT[state]
        self.status_label.setText(text)
        self.status_label.setStyleSheet(f"color: {color}; font-weight: bold;")

    def set_online_count(self, count: int):
        self.online_label.setText(f"{count} online")


# ============================================================================
# MESSAGE LIST
# ============================================================================

class MessageView(QTextBrowser):
    """Scrolling list of chat messages and system notices."""

    def __init__(self, username: str = ''):
        super().__init__()
        self.username = username
        self.setReadOnly(True)
        self.setOpenExternalLinks(False)
        self.setStyleSheet("""
            QTextBrowser {
                background-color: #2C2C2C;
                color: #ECF0F1;
                border: 1px solid #34495E;
                border-radius: 5px;
                padding: 5px;
                font-size: 10pt;
            }
        """)

    def reset(self, messages: List[Message]):
        self.clear()
        for message in messages:
            self.add_message(message)

    def add_message(self, message: Message):
        own = message.name == self.username
        color = "#9B59B6" if own else "#3498DB"
        author = "You" if own else html.escape(message.name)
        parts = [f'<span style="color: #95A5A6;">[{message.timestamp[11:16]}]</span> '
                 f'<span style="color: {color}; font-weight: bold;">{author}:</span>']
        if message.text:
            parts.append(html.escape(message.text))
        if message.image:
            parts.append(self._image_html(message))
        self.append(' '.join(parts))
        self._scroll_to_bottom()

    def add_notice(self, text: str, color: str = "#95A5A6"):
        self.append(f'<span style="color: {color};"><i>{html.escape(text)}</i></span>')
        self._scroll_to_bottom()

    def _image_html(self, message: Message) -> str:
        try:
            image = decode_image(message.image)
        except ValueError as e:
            logger.warning(f"Cannot show image of message {message.id}: {e}")
            return '<i>[image unavailable]</i>'
        url = QUrl(f"msg-image://{message.id}")
        self.document().addResource(QTextDocument.ResourceType.ImageResource, url, image)
        width = min(image.width(), 320)
        return f'<br><img src="{url.toString()}" width="{width}">'

    def _scroll_to_bottom(self):
        scrollbar = self.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())


# ============================================================================
# SIDE PANEL, TYPING INDICATOR, INPUT
# ============================================================================

class OnlineUsersPanel(QWidget):
    """List of names currently online."""

    def __init__(self):
        super().__init__()
        layout = QVBoxLayout()
        layout.setContentsMargins(5, 5, 5, 5)

        title = QLabel("Online Users")
        title.setFont(QFont("Arial", 12, QFont.Weight.Bold))
        layout.addWidget(title)

        self.user_list = QListWidget()
        self.user_list.setStyleSheet("""
            QListWidget {
                background-color: #2C3E50;
                border: 1px solid #34495E;
                border-radius: 5px;
                color: #ECF0F1;
            }
        """)
        layout.addWidget(self.user_list)
        self.setLayout(layout)

    def set_names(self, names: List[str], self_name: str):
        self.user_list.clear()
        for name in names:
            self.user_list.addItem(f"{name} (You)" if name == self_name else name)


class MessageInput(QWidget):
    """Text input with send and image buttons."""

    text_edited = pyqtSignal()
    message_submitted = pyqtSignal(str)
    image_selected = pyqtSignal(str)  # file path

    def __init__(self):
        super().__init__()
        layout = QHBoxLayout()
        layout.setContentsMargins(5, 5, 5, 5)

        self.input_field = QLineEdit()
        self.input_field.setMaxLength(MAX_TEXT_LENGTH)
        self.input_field.textEdited.connect(self._on_text_edited)
        self.input_field.returnPressed.connect(self.submit)
        layout.addWidget(self.input_field)

        self.image_btn = QPushButton("Image")
        self.image_btn.setToolTip("Send an image")
        self.image_btn.clicked.connect(self.choose_image)
        layout.addWidget(self.image_btn)

        self.send_btn = QPushButton("Send")
        self.send_btn.setEnabled(False)
        self.send_btn.clicked.connect(self.submit)
        layout.addWidget(self.send_btn)

        self.setLayout(layout)
        self.set_live(False)

    def set_live(self, live: bool):
        if live:
            self.input_field.setPlaceholderText("Type a message...")
        else:
            self.input_field.setPlaceholderText("Type a message... (not connected to a live server)")

    def _on_text_edited(self, text: str):
        self.send_btn.setEnabled(bool(text.strip()))
        self.text_edited.emit()

    def submit(self):
        text = self.input_field.text().strip()
        if text:
            self.message_submitted.emit(text)
            self.input_field.clear()
            self.send_btn.setEnabled(False)

    def choose_image(self):
        path, _ = QFileDialog.getOpenFileName(
            self, "Select image", "", "Images (*.png *.jpg *.jpeg *.gif *.bmp *.webp)"
        )
        if path:
            self.image_selected.emit(path)


# ============================================================================
# MAIN WINDOW
# ============================================================================

class ChatWindow(QMainWindow):
    """Main application window."""

    def __init__(self, server_host: str = DEFAULT_HOST, server_port: Optional[int] = None):
        super().__init__()
        self.server_host = server_host
        self.server_port = server_port
        self.username: Optional[str] = None
        self.network_thread: Optional['NetworkThread'] = None

        self.setup_ui()
        self.setup_connections()

    def setup_ui(self):
        """Setup the main window UI."""
        self.setWindowTitle("TalkSync")
        self.setGeometry(100, 100, 1000, 700)

        central_widget = QWidget()
        self.setCentralWidget(central_widget)

        main_layout = QVBoxLayout()
        main_layout.setContentsMargins(10, 10, 10, 10)

        self.header = ChatHeader()
        main_layout.addWidget(self.header)

        body = QHBoxLayout()

        chat_column = QVBoxLayout()
        self.message_view = MessageView()
        chat_column.addWidget(self.message_view, stretch=1)

        self.typing_label = QLabel("")
        self.typing_label.setStyleSheet("color: #95A5A6; font-style: italic;")
        chat_column.addWidget(self.typing_label)

        self.message_input = MessageInput()
        chat_column.addWidget(self.message_input)
        body.addLayout(chat_column, stretch=3)

        self.online_panel = OnlineUsersPanel()
        body.addWidget(self.online_panel, stretch=1)

        main_layout.addLayout(body)
        central_widget.setLayout(main_layout)

        self.apply_dark_theme()

    def setup_connections(self):
        """Setup signal-slot connections."""
        self.header.leave_clicked.connect(self.on_leave)
        self.message_input.text_edited.connect(self.on_text_edited)
        self.message_input.message_submitted.connect(self.on_send_message)
        self.message_input.image_selected.connect(self.on_send_image)

    def apply_dark_theme(self):
        """Apply dark theme styling."""
        self.setStyleSheet("""
            QMainWindow {
                background-color: #1A1A1A;
            }
            QWidget {
                background-color: #1A1A1A;
                color: #ECF0F1;
            }
            QLineEdit {
                background-color: #34495E;
                border: 1px solid #2C3E50;
                border-radius: 5px;
                padding: 5px;
            }
            QPushButton {
                background-color: #3498DB;
                color: white;
                border: none;
                padding: 8px 15px;
                border-radius: 5px;
                font-weight: bold;
            }
            QPushButton:disabled {
                background-color: #566573;
            }
        """)

    # ========================================================================
    # JOIN / LEAVE
    # ========================================================================

    def ask_username(self) -> Optional[str]:
        """Prompt for a display name; returns None when the user cancels."""
        while True:
            text, ok = QInputDialog.getText(
                self, 'Join the Chat', f'Enter your name (max {MAX_NAME_LENGTH} characters):',
                text=self.username or ''
            )
            if not ok:
                return None
            name = normalize_name(text)
            if name is not None:
                return name
            QMessageBox.warning(self, "Error", f"Name must be 1-{MAX_NAME_LENGTH} characters")

    def join(self, username: Optional[str] = None) -> bool:
        """Ask for a name (unless given) and start the connection."""
        name = normalize_name(username) if username else self.ask_username()
        if name is None:
            return False

        self.username = name
        self.message_view.username = name
        self.message_view.clear()
        self.online_panel.set_names([], name)
        self.header.set_online_count(0)
        self.typing_label.setText("")
        self.setWindowTitle(f"TalkSync - {name}")

        config = ClientConfig(self.server_host, self.server_port, name)
        self.network_thread = NetworkThread(config)
        self.network_thread.update_received.connect(self.handle_update)
        self.network_thread.start()
        return True

    def on_leave(self):
        """Leave the chat and go back to the name prompt."""
        self.stop_network()
        if not self.join():
            self.close()

    def stop_network(self):
        if self.network_thread is not None:
            self.network_thread.update_received.disconnect(self.handle_update)
            self.network_thread.stop()
            self.network_thread = None

    def closeEvent(self, event):
        """Close the connection when the window closes."""
        self.stop_network()
        super().closeEvent(event)

    # ========================================================================
    # OUTGOING
    # ========================================================================

    def on_text_edited(self):
        if self.network_thread:
            self.network_thread.call(self.network_thread.client.chat_client.input_changed)

    def on_send_message(self, text: str):
        if self.network_thread:
            self.network_thread.call(self.network_thread.client.chat_client.send_chat, text)

    def on_send_image(self, path: str):
        try:
            data_uri = compress_image(path)
        except ValueError as e:
            QMessageBox.warning(self, "Error", str(e))
            return
        if self.network_thread:
            self.network_thread.call(self.network_thread.client.chat_client.send_chat, None, data_uri)

    # ========================================================================
    # INCOMING
    # ========================================================================

    def handle_update(self, kind: str, payload):
        """Render one view update coming from the network thread."""
        if kind == UPDATE_STATE:
            self.header.set_state(payload)
            self.message_input.set_live(payload is ConnectionState.CONNECTED)
        elif kind == UPDATE_HISTORY:
            self.message_view.reset(payload)
        elif kind == UPDATE_MESSAGE:
            self.message_view.add_message(payload)
        elif kind == UPDATE_ONLINE:
            self.online_panel.set_names(payload, self.username)
            self.header.set_online_count(len(payload))
        elif kind == UPDATE_TYPING:
            self.typing_label.setText(typing_text(payload))
        elif kind == UPDATE_PRESENCE:
            event_type, name = payload
            if name != self.username:
                verb = "joined" if event_type == EventTypes.USER_JOINED else "left"
                self.message_view.add_notice(f"{name} {verb} the chat")
        elif kind == UPDATE_NOTICE:
            color = {"warning": "#E67E22", "error": "#E74C3C"}.get(payload.level, "#95A5A6")
            self.message_view.add_notice(payload.text, color)


# ============================================================================
# NETWORK THREAD
# ============================================================================

class NetworkThread(QThread):
    """Thread hosting the asyncio loop that runs ChatRelayClient."""

    update_received = pyqtSignal(str, object)  # kind, payload

    def __init__(self, config: ClientConfig):
        super().__init__()
        self.config = config
        self.client = ChatRelayClient(config)
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.loop_ready = threading.Event()
        self._stop_event: Optional[asyncio.Event] = None

    def run(self):
        """Run network loop."""
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self._stop_event = asyncio.Event()
        # Signals emitted here are queued to the GUI thread
        self.client.chat_client.set_update_handler(self.update_received.emit)
        self.loop_ready.set()
        try:
            self.loop.run_until_complete(self._main())
        finally:
            self.loop.close()

    async def _main(self):
        self.client.start()
        await self._stop_event.wait()
        await self.client.close()

    def call(self, func, *args):
        """Run func(*args) on the network loop from the GUI thread."""
        if not self.loop_ready.wait(timeout=5.0):
            logger.warning("[NETWORK] Event loop not ready, dropping call")
            return
        self.loop.call_soon_threadsafe(func, *args)

    def stop(self):
        """Close the client and wait for the thread to finish."""
        if self.loop_ready.wait(timeout=5.0) and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._stop_event.set)
        self.wait(5000)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main(server_host: str = DEFAULT_HOST, server_port: Optional[int] = None, username: Optional[str] = None):
    """Main entry point."""
    app = QApplication(sys.argv)

    window = ChatWindow(server_host, server_port)
    window.show()

    if not window.join(username):
        sys.exit(1)

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
