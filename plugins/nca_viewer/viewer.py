"""
Interactive Pygame Viewer for Neural Cellular Automata

Shows the live grid of the selected model, scaled up without smoothing,
next to a control panel: model selector, speed slider, channel mapping
(hover to preview, click to keep) and restart/stop buttons.

Controls:
  SPACE       Start / Stop evolution
  R           Restart (reseed) the current model
  0-6         Speed setting
  M           Next channel mapping
  TAB         Toggle control panel
  S           Save screenshot
  H           Toggle HUD overlay
  Q / ESC     Quit
  Mouse L     Erase (drag to keep erasing); touch works the same
"""

import os
import threading
import time

import numpy as np
import pygame

from .config import ViewerConfig
from .controls import ControlPanel, THEME
from .engine import SPEED_LABELS
from .grid import scale_pointer
from .mapping import mapping_label, mapping_tokens
from .models import model_choices
from .session import Controller

PANEL_WIDTH = 300


class Viewer:
    def __init__(self, config=None, controller=None, width=640, height=640):
        self.config = config or ViewerConfig()
        self.controller = controller or Controller(self.config)
        self.canvas_w = width
        self.canvas_h = height
        self.panel_visible = True
        self.running = True
        self.show_hud = True
        self.pointer_down = False

        self._frame_lock = threading.Lock()
        self._frame = None
        self.controller.add_listener(self._on_frame)

        self.tokens = mapping_tokens(self.config.channels)
        self.models = []
        self.models_error = None

        # Control panel (built after pygame.init in run())
        self.panel = None
        self.model_row = None
        self.mapping_row = None
        self.speed_slider = None
        self.stop_button = None
        self.restart_button = None

    @property
    def total_w(self):
        return self.canvas_w + (PANEL_WIDTH if self.panel_visible else 0)

    # ── models ────────────────────────────────────────────────────────

    def refresh_models(self):
        try:
            self.models = model_choices(self.config.models_dir)
            self.models_error = None
        except (OSError, ValueError) as e:
            print(f"[NCA] Error loading models list: {e}")
            self.models = []
            self.models_error = str(e)
        return self.models

    def load_initial(self, model_path=None):
        """Load ``model_path``, or the first discovered model."""
        if model_path is not None:
            return self.controller.load_model(model_path)
        if self.models:
            return self.controller.load_model(self.models[0]["path"])
        print("[NCA] No models available")
        return False

    # ── frames ────────────────────────────────────────────────────────

    def _on_frame(self, rgba):
        with self._frame_lock:
            self._frame = rgba

    def latest_frame(self):
        with self._frame_lock:
            return self._frame

    def _frame_surface(self):
        rgba = self.latest_frame()
        if rgba is None:
            return None
        h, w = rgba.shape[:2]
        surface = pygame.image.frombuffer(np.ascontiguousarray(rgba).tobytes(), (w, h), "RGBA")
        # Nearest-neighbour scale keeps cells crisp
        return pygame.transform.scale(surface, (self.canvas_w, self.canvas_h))

    # ── pointer erase ─────────────────────────────────────────────────

    def canvas_to_cell(self, mx, my):
        return scale_pointer(mx, my, self.canvas_w, self.canvas_h,
                             self.config.width, self.config.height)

    def _on_canvas(self, mx, my):
        return 0 <= mx < self.canvas_w and 0 <= my < self.canvas_h

    def _erase_at(self, mx, my):
        x, y = self.canvas_to_cell(mx, my)
        self.controller.erase_at(x, y)

    def handle_pointer(self, event):
        """Mouse/touch erase on the canvas. Returns True if consumed."""
        if event.type in (pygame.FINGERDOWN, pygame.FINGERMOTION, pygame.FINGERUP):
            # Finger positions are normalized to the window
            mx, my = event.x * self.total_w, event.y * self.canvas_h
            kind = {pygame.FINGERDOWN: "down", pygame.FINGERMOTION: "move",
                    pygame.FINGERUP: "up"}[event.type]
        elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            mx, my, kind = event.pos[0], event.pos[1], "down"
        elif event.type == pygame.MOUSEMOTION:
            mx, my, kind = event.pos[0], event.pos[1], "move"
        elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
            mx, my, kind = event.pos[0], event.pos[1], "up"
        else:
            return False

        if kind == "up":
            self.pointer_down = False
            return False
        if not self._on_canvas(mx, my):
            # Leaving the canvas ends the stroke
            self.pointer_down = False
            return False
        if kind == "down":
            self.pointer_down = True
        if self.pointer_down:
            self._erase_at(mx, my)
            return True
        return False

    # ── panel ─────────────────────────────────────────────────────────

    def _build_panel(self):
        panel = ControlPanel(self.canvas_w, 0, PANEL_WIDTH, self.canvas_h)

        panel.add_section("MODEL")
        if self.models:
            names = [m["name"] for m in self.models]
            paths = [os.path.abspath(m["path"]) for m in self.models]
            current = self.controller.model_path
            selected = 0
            if current and os.path.abspath(current) in paths:
                selected = paths.index(os.path.abspath(current))
            self.model_row = panel.add_button_row(
                names, selected=selected, on_select=self._on_model_select
            )
        else:
            label = "Error loading models" if self.models_error else "No models available"
            panel.add_button(label, enabled=False)

        panel.add_section("SPEED")
        self.speed_slider = panel.add_slider(
            "Speed", 0, 6, self.controller.engine.speed,
            describe=lambda v: SPEED_LABELS.get(v, "1x"),
            on_change=self.controller.set_speed,
        )

        panel.add_section("CHANNELS")
        self.mapping_row = panel.add_button_row(
            self.tokens,
            selected=self.tokens.index(self.controller.selected_mapping),
            on_select=self._on_mapping_select,
            on_hover=lambda i, token: self.controller.preview_mapping(token),
            on_leave=self.controller.end_preview,
        )

        panel.add_spacer(4)
        self.restart_button = panel.add_button("Restart  [R]", on_click=self.controller.restart)
        panel.add_spacer(4)
        self.stop_button = panel.add_button("Stop  [SPACE]", on_click=self.controller.stop)
        panel.add_spacer(4)
        panel.add_button("Screenshot  [S]", on_click=lambda: self._save_screenshot())

        self.panel = panel
        self._sync_panel()

    def _sync_panel(self):
        """Reflect controller state in widgets that depend on it."""
        if self.stop_button is not None:
            self.stop_button.enabled = self.controller.running
        if self.restart_button is not None:
            self.restart_button.enabled = self.controller.model_path is not None
        if self.speed_slider is not None and not self.speed_slider.dragging:
            self.speed_slider.set_value(self.controller.engine.speed)

    def _on_model_select(self, idx, name):
        if idx < len(self.models):
            self.controller.load_model(self.models[idx]["path"])

    def _on_mapping_select(self, idx, token):
        self.controller.select_mapping(token)

    def _cycle_mapping(self):
        idx = (self.tokens.index(self.controller.selected_mapping) + 1) % len(self.tokens)
        self.controller.select_mapping(self.tokens[idx])
        if self.mapping_row:
            self.mapping_row.select(idx)

    # ── drawing ───────────────────────────────────────────────────────

    def _draw_hud(self, screen):
        if not self.show_hud:
            return
        state = self.controller.state()
        name = state["model_name"] or "no model"
        line = (f"{name}  |  Gen: {state['generation']:,}  |  "
                f"Speed: {state['speed_label']}  |  "
                f"{mapping_label(state['mapping'])}")
        if not state["running"]:
            line = "[STOPPED]  " + line

        bg = pygame.Surface((self.canvas_w, 24), pygame.SRCALPHA)
        bg.fill((0, 0, 0, 140))
        screen.blit(bg, (0, 0))
        screen.blit(self.hud_font.render(line, True, (210, 215, 225)), (10, 6))

    def _save_screenshot(self):
        surface = self._frame_surface()
        if surface is None:
            print("[NCA] Nothing to save yet.")
            return None
        screenshots_dir = os.path.join(os.getcwd(), "screenshots")
        os.makedirs(screenshots_dir, exist_ok=True)
        timestamp = time.strftime("%Y%m%d_%H%M%S")
        path = os.path.join(screenshots_dir, f"nca_{self.controller.current_mapping}_{timestamp}.png")
        pygame.image.save(surface, path)
        pygame.image.save(surface, os.path.join(screenshots_dir, "latest.png"))
        print(f"[NCA] Screenshot saved: {path}")
        return path

    # ── main loop ─────────────────────────────────────────────────────

    def run(self, model_path=None):
        """Main viewer loop."""
        pygame.init()
        screen = pygame.display.set_mode((self.total_w, self.canvas_h))
        pygame.display.set_caption("Neural Cellular Automata")
        clock = pygame.time.Clock()

        self.hud_font = pygame.font.SysFont("menlo", 13)
        self.panel_font = pygame.font.SysFont("menlo", 12)

        self.refresh_models()
        self.load_initial(model_path)
        self._build_panel()

        try:
            while self.running:
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self.running = False
                        continue
                    if event.type == pygame.KEYDOWN:
                        screen = self._handle_keydown(event, screen)
                        continue
                    if self.handle_pointer(event):
                        continue
                    if self.panel_visible and self.panel:
                        self.panel.handle_event(event)

                self._sync_panel()

                screen.fill(THEME["bg"])
                pygame.draw.rect(screen, (0, 0, 0), (0, 0, self.canvas_w, self.canvas_h))
                surface = self._frame_surface()
                if surface is not None:
                    screen.blit(surface, (0, 0))
                self._draw_hud(screen)

                if self.panel_visible and self.panel:
                    self.panel.x = self.canvas_w
                    self.panel.draw(screen, self.panel_font)

                pygame.display.flip()
                clock.tick(60)
        finally:
            self.controller.close()
            pygame.quit()

    def _handle_keydown(self, event, screen):
        key = event.key
        ctl = self.controller

        if key in (pygame.K_q, pygame.K_ESCAPE):
            self.running = False
        elif key == pygame.K_SPACE:
            if ctl.running:
                ctl.stop()
            else:
                ctl.start()
        elif key == pygame.K_r:
            ctl.restart()
        elif key == pygame.K_m:
            self._cycle_mapping()
        elif key == pygame.K_h:
            self.show_hud = not self.show_hud
        elif key == pygame.K_s:
            self._save_screenshot()
        elif key == pygame.K_TAB:
            self.panel_visible = not self.panel_visible
            screen = pygame.display.set_mode((self.total_w, self.canvas_h))
        elif pygame.K_0 <= key <= pygame.K_6:
            ctl.set_speed(key - pygame.K_0)
        return screen
