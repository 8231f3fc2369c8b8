from pathlib import Path
import json, cv2


class SessionStorage:
    """Per-session folder: raw frames, annotated frames, logs and a manifest."""

    def __init__(self, root: str, name: str = "anchors"):
        self.root = Path(root)
        self.name = name
        self.session_dir = None
        self.frames_dir = None
        self.annotated_dir = None
        self.logs_dir = None
        self.last_path = None

    def begin(self) -> str:
        from time import strftime
        sid = f"{self.name}_{strftime('%Y%m%d_%H%M%S')}"
        self.session_dir = self.root / sid
        suffix = 1
        while self.session_dir.exists():
            suffix += 1
            self.session_dir = self.root / f"{sid}_{suffix}"
        self.frames_dir = self.session_dir / "frames"
        self.annotated_dir = self.session_dir / "annotated"
        self.logs_dir = self.session_dir / "logs"
        for d in (self.frames_dir, self.annotated_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)
        return str(self.session_dir)

    def save_frame(self, f) -> str:
        p = self.frames_dir / f"f{f.idx:06d}.png"
        cv2.imwrite(str(p), f.image)
        self.last_path = str(p)
        return self.last_path

    def save_annotated(self, idx: int, image) -> str:
        p = self.annotated_dir / f"f{idx:06d}_qr.jpg"
        cv2.imwrite(str(p), image)
        return str(p)

    def write_manifest(self, meta: dict):
        with open(self.session_dir / "config.json", "w", encoding="utf-8") as fp:
            json.dump(meta, fp, indent=2, default=str)
