"""
Control panel widgets for the pygame viewer

Dark-themed widgets drawn directly with pygame: a stepped slider for the
speed table, buttons that can be disabled, and a wrapping button row whose
hover state previews a choice before it is clicked.
"""

import pygame


THEME = {
    "bg": (18, 18, 24),
    "panel": (25, 25, 35),
    "track": (50, 50, 65),
    "track_fill": (80, 140, 220),
    "handle": (200, 210, 230),
    "handle_active": (255, 255, 255),
    "text": (180, 185, 195),
    "text_bright": (230, 235, 245),
    "text_dim": (100, 105, 115),
    "button": (40, 42, 55),
    "button_hover": (55, 58, 75),
    "button_active": (70, 100, 180),
    "button_disabled": (30, 30, 40),
    "divider": (40, 40, 55),
}


class Slider:
    """Horizontal slider snapping to integer steps between min and max.

    ``describe`` turns the value into the text shown on the right
    (e.g. 3 -> "1x").
    """

    def __init__(self, x, y, width, label, min_val, max_val, value,
                 describe=str, on_change=None):
        self.x = x
        self.y = y
        self.width = width
        self.height = 36
        self.label = label
        self.min_val = min_val
        self.max_val = max_val
        self.value = value
        self.describe = describe
        self.on_change = on_change
        self.dragging = False

        self.track_y = self.y + 22
        self.track_x = self.x + 8
        self.track_w = self.width - 16

    def _val_to_x(self, val):
        frac = (val - self.min_val) / max(1, self.max_val - self.min_val)
        return self.track_x + frac * self.track_w

    def _x_to_val(self, px):
        frac = max(0.0, min(1.0, (px - self.track_x) / self.track_w))
        return int(round(self.min_val + frac * (self.max_val - self.min_val)))

    def _drag_to(self, px):
        val = self._x_to_val(px)
        if val != self.value:
            self.value = val
            if self.on_change:
                self.on_change(val)

    def handle_event(self, event):
        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            mx, my = event.pos
            if (self.track_x - 4 <= mx <= self.track_x + self.track_w + 4 and
                    abs(my - self.track_y) <= 12):
                self.dragging = True
                self._drag_to(mx)
                return True
        elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
            self.dragging = False
        elif event.type == pygame.MOUSEMOTION and self.dragging:
            self._drag_to(event.pos[0])
            return True
        return False

    def set_value(self, val):
        self.value = max(self.min_val, min(self.max_val, int(val)))

    def draw(self, surface, font):
        surface.blit(font.render(self.label, True, THEME["text"]), (self.x + 8, self.y + 2))
        val_surf = font.render(self.describe(self.value), True, THEME["text_bright"])
        surface.blit(val_surf, (self.x + self.width - val_surf.get_width() - 8, self.y + 2))

        pygame.draw.rect(surface, THEME["track"],
                         pygame.Rect(self.track_x, self.track_y - 2, self.track_w, 4),
                         border_radius=2)
        hx = self._val_to_x(self.value)
        pygame.draw.rect(surface, THEME["track_fill"],
                         pygame.Rect(self.track_x, self.track_y - 2, hx - self.track_x, 4),
                         border_radius=2)
        # Tick marks for each step
        for v in range(self.min_val, self.max_val + 1):
            tx = int(self._val_to_x(v))
            pygame.draw.line(surface, THEME["text_dim"],
                             (tx, self.track_y + 6), (tx, self.track_y + 9))
        color = THEME["handle_active"] if self.dragging else THEME["handle"]
        pygame.draw.circle(surface, color, (int(hx), self.track_y), 7)


class Button:
    """Clickable button; a disabled button ignores clicks and draws dimmed."""

    def __init__(self, x, y, width, height, label, on_click=None,
                 active=False, enabled=True):
        self.rect = pygame.Rect(x, y, width, height)
        self.label = label
        self.on_click = on_click
        self.active = active
        self.enabled = enabled
        self.hovered = False

    def handle_event(self, event):
        if event.type == pygame.MOUSEMOTION:
            self.hovered = self.rect.collidepoint(event.pos)
        elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            if self.rect.collidepoint(event.pos):
                if self.enabled and self.on_click:
                    self.on_click()
                return True
        return False

    def draw(self, surface, font):
        if not self.enabled:
            color, text = THEME["button_disabled"], THEME["text_dim"]
        elif self.active:
            color, text = THEME["button_active"], THEME["text_bright"]
        elif self.hovered:
            color, text = THEME["button_hover"], THEME["text_bright"]
        else:
            color, text = THEME["button"], THEME["text_bright"]
        pygame.draw.rect(surface, color, self.rect, border_radius=4)

        label_surf = font.render(self.label, True, text)
        lx = self.rect.x + (self.rect.width - label_surf.get_width()) // 2
        ly = self.rect.y + (self.rect.height - label_surf.get_height()) // 2
        surface.blit(label_surf, (lx, ly))


class ButtonRow:
    """Wrapping row of radio-style buttons.

    on_select(i, label) fires on click. on_hover(i, label) fires when the
    pointer moves onto a different button, on_leave() when it leaves the
    row entirely.
    """

    def __init__(self, x, y, width, labels, selected=0, on_select=None,
                 on_hover=None, on_leave=None, btn_height=24):
        self.x = x
        self.y = y
        self.width = width
        self.labels = list(labels)
        self.selected = selected
        self.on_select = on_select
        self.on_hover = on_hover
        self.on_leave = on_leave
        self.hover_index = None

        self.buttons = []
        padding = 4
        bx, by = x, y
        for label in self.labels:
            bw = max(len(label) * 8 + 14, 36)
            if bx + bw > x + width and bx > x:
                bx = x
                by += btn_height + padding
            self.buttons.append(Button(bx, by, bw, btn_height, label))
            bx += bw + padding

        self.total_height = (by - y + btn_height) if self.labels else 0
        self._update_active()

    def _update_active(self):
        for i, btn in enumerate(self.buttons):
            btn.active = (i == self.selected)

    def select(self, index):
        self.selected = index
        self._update_active()

    def _index_at(self, pos):
        for i, btn in enumerate(self.buttons):
            if btn.rect.collidepoint(pos):
                return i
        return None

    def handle_event(self, event):
        if event.type == pygame.MOUSEMOTION:
            for btn in self.buttons:
                btn.handle_event(event)
            idx = self._index_at(event.pos)
            if idx != self.hover_index:
                was_hovering = self.hover_index is not None
                self.hover_index = idx
                if idx is not None and self.on_hover:
                    self.on_hover(idx, self.labels[idx])
                elif idx is None and was_hovering and self.on_leave:
                    self.on_leave()
            return False

        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            idx = self._index_at(event.pos)
            if idx is not None:
                self.select(idx)
                if self.on_select:
                    self.on_select(idx, self.labels[idx])
                return True
        return False

    def draw(self, surface, font):
        for btn in self.buttons:
            btn.draw(surface, font)


class SectionHeader:
    """Divider line with a title."""

    def __init__(self, x, y, width, title):
        self.x = x
        self.y = y
        self.width = width
        self.title = title
        self.height = 24

    def draw(self, surface, font):
        pygame.draw.line(surface, THEME["divider"],
                         (self.x + 8, self.y + 8), (self.x + self.width - 8, self.y + 8))
        surface.blit(font.render(self.title, True, THEME["text_dim"]), (self.x + 8, self.y + 12))


class ControlPanel:
    """Side panel stacking widgets top to bottom."""

    def __init__(self, x, y, width, height):
        self.x = x
        self.y = y
        self.width = width
        self.height = height
        self.widgets = []
        self.surface = pygame.Surface((width, height))
        self._cursor_y = 8

    def add_section(self, title):
        header = SectionHeader(0, self._cursor_y, self.width, title)
        self.widgets.append(header)
        self._cursor_y += header.height + 4

    def add_slider(self, label, min_val, max_val, value, describe=str, on_change=None):
        slider = Slider(0, self._cursor_y, self.width, label,
                        min_val, max_val, value, describe, on_change)
        self.widgets.append(slider)
        self._cursor_y += slider.height + 6
        return slider

    def add_button_row(self, labels, selected=0, on_select=None,
                       on_hover=None, on_leave=None):
        row = ButtonRow(8, self._cursor_y, self.width - 16, labels, selected,
                        on_select, on_hover, on_leave)
        self.widgets.append(row)
        self._cursor_y += row.total_height + 8
        return row

    def add_button(self, label, on_click=None, enabled=True):
        btn = Button(8, self._cursor_y, self.width - 16, 28, label, on_click,
                     enabled=enabled)
        self.widgets.append(btn)
        self._cursor_y += 36
        return btn

    def add_spacer(self, height=8):
        self._cursor_y += height

    def to_local(self, event):
        """Translate a positional event into panel coordinates (None if outside)."""
        local = (event.pos[0] - self.x, event.pos[1] - self.y)
        if not (0 <= local[0] <= self.width and 0 <= local[1] <= self.height):
            return None
        return pygame.event.Event(event.type, {
            **{k: v for k, v in event.__dict__.items() if k != "pos"},
            "pos": local,
        })

    def handle_event(self, event):
        if hasattr(event, "pos"):
            adjusted = self.to_local(event)
            if adjusted is None:
                for widget in self.widgets:
                    if event.type == pygame.MOUSEBUTTONUP and hasattr(widget, "dragging"):
                        widget.dragging = False
                    # Let rows see the pointer leave so hover previews end
                    if event.type == pygame.MOUSEMOTION and isinstance(widget, ButtonRow):
                        widget.handle_event(pygame.event.Event(
                            pygame.MOUSEMOTION, {"pos": (-1, -1), "rel": (0, 0), "buttons": (0, 0, 0)}
                        ))
                return False
        else:
            adjusted = event

        for widget in self.widgets:
            if hasattr(widget, "handle_event") and widget.handle_event(adjusted):
                return True
        return False

    def draw(self, target_surface, font):
        self.surface.fill(THEME["panel"])
        pygame.draw.line(self.surface, THEME["divider"], (0, 0), (0, self.height))
        for widget in self.widgets:
            widget.draw(self.surface, font)
        target_surface.blit(self.surface, (self.x, self.y))
