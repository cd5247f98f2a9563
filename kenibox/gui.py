import json
import logging
import os
import threading
from tkinter import ttk, messagebox, filedialog

import customtkinter as ctk

from . import __version__, shell
from .config import save_settings
from .models import result_rows

log = logging.getLogger(__name__)

BUTTONS = [
    ('JAR files', 'find_jar_files'), ('Extension changes', 'check_extension_changes'),
    ('Deleted files', 'get_deleted_files'), ('Executed JARs', 'get_executed_jars'),
    ('USB disconnects', 'check_usb_disconnection'), ('Screen recording', 'check_screen_recording'),
    ('Browsers', 'detect_browsers'), ('Open browser history', 'open_browser_history'),
    ('Minecraft cheats', 'detect_minecraft_cheats'), ('Minecraft mods', 'scan_minecraft_mods'),
    ('Stopped services', 'detect_stopped_services'), ('Folder history', 'get_folder_history'),
    ('Execution history', 'get_execution_history'), ('Command history', 'get_command_history'),
    ('Open Minecraft files', 'open_minecraft_files'), ('Processes', 'analyze_processes'),
    ('Injections', 'detect_injections'),
]
# Probes that read the time window entry.
WINDOWED = {'get_deleted_files': 'minutes', 'get_executed_jars': 'hours', 'get_execution_history': 'hours'}
COLUMNS = ('Section', 'Name', 'Source', 'Time', 'Path')


def row_tag(record):
    if record.get('severity') == 'high': return ('critical',)
    if record.get('suspicious') or record.get('severity') == 'medium' or record.get('suspiciousKeywords'): return ('warning',)
    return ()


class KeniboxApp(ctk.CTk):
    def __init__(self, service, settings=None):
        super().__init__()
        self.service = service
        self.settings = settings or {}
        self.rows = {}
        self.running = set()
        self.setup_gui()
        self.after(5000, self.reap_children)

    def setup_gui(self):
        ctk.set_appearance_mode(self.settings.get('appearance', 'Dark')); self.title(f"KeniBox SS Tool {__version__}"); self.geometry("1400x850")
        top_frame = ctk.CTkFrame(self); top_frame.pack(pady=10, padx=10, fill="x")
        ctk.CTkLabel(top_frame, text="Minutes / hours:").pack(side="left", padx=(10, 4))
        self.window_entry = ctk.CTkEntry(top_frame, width=80); self.window_entry.pack(side="left")
        ctk.CTkButton(top_frame, text="Export Results", command=self.export_results).pack(side="right", padx=10)
        ctk.CTkButton(top_frame, text="Clear Results", command=self.clear_results).pack(side="right", padx=10)
        self.status = ctk.CTkLabel(top_frame, text="Ready"); self.status.pack(side="left", padx=20)
        body = ctk.CTkFrame(self); body.pack(padx=10, pady=(0, 10), expand=True, fill="both")
        button_frame = ctk.CTkScrollableFrame(body, width=220); button_frame.pack(side="left", fill="y", padx=(0, 10))
        self.buttons = {}
        for label, name in BUTTONS:
            btn = ctk.CTkButton(button_frame, text=label, command=lambda n=name: self.run_probe(n))
            btn.pack(fill="x", padx=5, pady=4); self.buttons[name] = btn
        right = ctk.CTkFrame(body); right.pack(side="left", expand=True, fill="both")
        self.summary = ctk.CTkTextbox(right, height=90, wrap="word", font=("Courier New", 11)); self.summary.pack(fill="x", padx=5, pady=5)
        self.summary.configure(state="disabled")
        tree_frame = ctk.CTkFrame(right); tree_frame.pack(expand=True, fill="both", padx=5, pady=(0, 5))
        self.tree = self.create_treeview(tree_frame, COLUMNS)
        self.tree.bind("<Double-1>", self.show_detailed_info)

    def reap_children(self):
        shell.reap(); self.after(5000, self.reap_children)

    def create_treeview(self, parent, columns):
        tree = ttk.Treeview(parent, columns=columns, show='headings')
        for col in columns: tree.heading(col, text=col); tree.column(col, width=180, anchor='w')
        tree.column('Section', width=140); tree.column('Time', width=150, anchor='center'); tree.column('Path', width=420)
        scrollbar = ctk.CTkScrollbar(parent, command=tree.yview); tree.configure(yscrollcommand=scrollbar.set)
        scrollbar.pack(side="right", fill="y"); tree.pack(expand=True, fill="both")
        tree.tag_configure('critical', background='#8B0000'); tree.tag_configure('warning', background='#FF8C00')
        return tree

    def window_arg(self, name):
        if name not in WINDOWED: return None
        value = self.window_entry.get().strip()
        return value or None

    def run_probe(self, name, arg=None):
        if name in self.running: return
        arg = arg if arg is not None else self.window_arg(name)
        self.running.add(name)
        if name in self.buttons: self.buttons[name].configure(state="disabled")
        self.status.configure(text=f"Running {name}...")
        worker = threading.Thread(target=self._run_probe_threaded, args=(name, arg))
        worker.daemon = True
        worker.start()

    def _run_probe_threaded(self, name, arg):
        result = self.service.invoke(name, arg)
        self.after(0, self._show_result, name, result)

    def _show_result(self, name, result):
        self.running.discard(name)
        if name in self.buttons: self.buttons[name].configure(state="normal")
        if isinstance(result, dict) and set(result) == {'error'}:
            self.status.configure(text=f"{name} failed")
            messagebox.showerror("Error", f"{name} failed:\n{result['error']}"); return
        if name == 'open_file_location':
            self.status.configure(text=f"Opened {result.get('path')}"); return
        summary, rows = result_rows(result)
        self.status.configure(text=f"{name}: {len(rows)} records")
        self.summary.configure(state="normal"); self.summary.delete("0.0", "end")
        self.summary.insert("0.0", "\n".join(f"{key:<20}: {value}" for key, value in summary.items()) or name)
        self.summary.configure(state="disabled")
        self.tree.delete(*self.tree.get_children()); self.rows.clear()
        for i, (section, record) in enumerate(rows):
            iid = str(i); self.rows[iid] = record
            values = (section, record.get('name', ''), record.get('source', ''), record.get('timestamp') or '', record.get('path', ''))
            self.tree.insert("", "end", iid=iid, values=values, tags=row_tag(record))

    def show_detailed_info(self, event):
        if not self.tree.selection(): return
        data = self.rows.get(self.tree.selection()[0])
        if not data: return
        win = ctk.CTkToplevel(self); win.title(f"Details for {data.get('name', '')}"); win.geometry("800x600")
        textbox = ctk.CTkTextbox(win, wrap="word", font=("Courier New", 11)); textbox.pack(expand=True, fill="both", padx=10, pady=10)
        textbox.insert("0.0", json.dumps(data, indent=2, ensure_ascii=False)); textbox.configure(state="disabled")
        path = data.get('path') or ''
        btn_frame = ctk.CTkFrame(win); btn_frame.pack(fill="x", padx=10, pady=(0, 10))
        if path and os.path.exists(path):
            ctk.CTkButton(btn_frame, text="Open Location", command=lambda p=path: self.run_probe('open_file_location', p)).pack(side="left", padx=6)
        ctk.CTkButton(btn_frame, text="Close", command=win.destroy).pack(side="right", padx=6)

    def clear_results(self):
        self.service.session.clear()
        self.tree.delete(*self.tree.get_children()); self.rows.clear()
        self.status.configure(text="Results cleared")

    def export_results(self):
        if not len(self.service.session):
            messagebox.showinfo("Export", "Run at least one check before exporting."); return
        initial = self.settings.get('export_dir') or os.path.expanduser('~')
        path = filedialog.asksaveasfilename(parent=self, title="Export results", initialdir=initial, defaultextension=".json",
                                            initialfile="kenibox-results.json", filetypes=[("JSON", "*.json")])
        if not path: return
        try: self.service.session.export(path)
        except OSError as e: messagebox.showerror("Error", f"Could not export results: {e}"); return
        self.settings['export_dir'] = os.path.dirname(path)
        try: save_settings(self.settings)
        except OSError as e: log.warning("Could not save settings: %s", e)
        if messagebox.askyesno("Exported", f"Results exported to:\n{path}\n\nOpen the export folder?"): shell.reveal(path, select=True)
