"""
Skill 加载器（目录 / zip 压缩包）。

目录结构约定：

    skill-name/
      SKILL.md        # 必需
      scripts/        # 可执行脚本
      references/     # 参考文档
      assets/         # 资源
      templates/      # 模板
      core/           # 公共代码
      *.md            # 根目录下除 SKILL.md 外的文档

约束：
- 只收集白名单扩展名的文本文件；无法按 UTF-8 解码的文件被跳过；
- zip 内的条目裁剪到 SKILL.md 所在目录；路径穿越（绝对路径、`..`、反斜杠、symlink）直接拒绝。
"""

from __future__ import annotations

import logging
import stat
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, List

from anycowork_runtime.core.errors import SkillLoadError, SkillParseError
from anycowork_runtime.skills.models import LoadedSkill, MarketplaceSkillInfo, SkillFile
from anycowork_runtime.skills.parser import parse_skill_md

logger = logging.getLogger(__name__)

SKILL_MD = "SKILL.md"
SCAN_DIRS = ("scripts", "references", "assets", "templates", "core")

ALLOWED_EXTENSIONS = (
    ".py", ".js", ".ts", ".sh", ".bash", ".zsh",
    ".md", ".txt", ".rst",
    ".json", ".yaml", ".yml", ".toml",
    ".html", ".css", ".xml", ".xsd",
    ".sql",
    ".j2", ".jinja", ".jinja2",
)

_FILE_TYPES = (
    ((".py",), "python"),
    ((".js",), "javascript"),
    ((".ts",), "typescript"),
    ((".sh", ".bash", ".zsh"), "shell"),
    ((".md",), "markdown"),
    ((".json",), "json"),
    ((".yaml", ".yml"), "yaml"),
    ((".toml",), "toml"),
    ((".html",), "html"),
    ((".css",), "css"),
    ((".xml", ".xsd"), "xml"),
    ((".sql",), "sql"),
    ((".j2", ".jinja", ".jinja2"), "jinja"),
    ((".txt", ".rst"), "text"),
)


def should_include_file(filename: str) -> bool:
    """文件名是否命中扩展名白名单（大小写不敏感）。"""

    return str(filename).lower().endswith(ALLOWED_EXTENSIONS)


def detect_file_type(filename: str) -> str:
    """按扩展名返回文件类型标签（python/shell/markdown/...；未知为 unknown）。"""

    lower = str(filename).lower()
    for exts, label in _FILE_TYPES:
        if lower.endswith(exts):
            return label
    return "unknown"


def _collect_files(dir_path: Path, rel_prefix: str, files: Dict[str, SkillFile]) -> None:
    """递归收集白名单文件（key 为 posix 相对路径）。"""

    for entry in sorted(dir_path.iterdir(), key=lambda p: p.name):
        rel = f"{rel_prefix}/{entry.name}"
        if entry.is_dir():
            _collect_files(entry, rel, files)
        elif entry.is_file() and should_include_file(entry.name):
            try:
                content = entry.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                logger.debug("skipping unreadable skill file: %s", entry)
                continue
            files[rel] = SkillFile(content=content, file_type=detect_file_type(entry.name))


def load_skill_from_dir(dir_path: Path) -> LoadedSkill:
    """
    从目录加载 skill。

    异常：
    - SkillLoadError：不是目录 / 缺少 SKILL.md / 读取失败
    - SkillParseError：SKILL.md 不合法
    """

    root = Path(dir_path)
    if not root.is_dir():
        raise SkillLoadError(f"Path is not a directory: {root}")
    skill_md = root / SKILL_MD
    if not skill_md.exists():
        raise SkillLoadError(f"SKILL.md not found in {root}")
    try:
        text = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SkillLoadError(f"Failed to read SKILL.md: {e}") from e

    skill = parse_skill_md(text)

    files: Dict[str, SkillFile] = {}
    for sub in SCAN_DIRS:
        sub_path = root / sub
        if sub_path.is_dir():
            _collect_files(sub_path, sub, files)

    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.is_file() and entry.name.endswith(".md") and entry.name != SKILL_MD:
            try:
                files[entry.name] = SkillFile(content=entry.read_text(encoding="utf-8"), file_type="markdown")
            except (OSError, UnicodeDecodeError):
                logger.debug("skipping unreadable skill file: %s", entry)

    return LoadedSkill(skill=skill, files=files)


def _safe_member_name(info: zipfile.ZipInfo) -> PurePosixPath:
    """校验 zip 条目名并返回规范化路径；不安全则抛 `SkillLoadError`。"""

    raw = str(info.filename or "")
    mode = (int(info.external_attr) >> 16) & 0xFFFF
    if "\\" in raw or raw.startswith("/") or stat.S_ISLNK(mode):
        raise SkillLoadError(f"Unsafe entry in skill archive: {raw}", details={"name": raw})
    parts = [p for p in PurePosixPath(raw).parts if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts):
        raise SkillLoadError(f"Unsafe entry in skill archive: {raw}", details={"name": raw})
    return PurePosixPath(*parts)


def load_skill_from_zip(zip_path: Path) -> LoadedSkill:
    """
    从 zip 压缩包加载 skill。

    说明：
    - 以第一个 `SKILL.md`（按条目顺序）所在目录为基准目录，其外的条目被忽略；
    - 二进制（非 UTF-8）条目被跳过。

    异常：
    - SkillLoadError：无法打开 / 缺少 SKILL.md / 条目路径不安全
    - SkillParseError：SKILL.md 不合法
    """

    try:
        zf = zipfile.ZipFile(Path(zip_path))
    except (zipfile.BadZipFile, OSError) as e:
        raise SkillLoadError(f"Failed to read ZIP archive: {e}") from e

    with zf:
        members = [(info, _safe_member_name(info)) for info in zf.infolist() if not info.is_dir()]

        base: PurePosixPath | None = None
        for _info, path in members:
            if path.name == SKILL_MD:
                base = path.parent
                break
        if base is None:
            raise SkillLoadError("SKILL.md not found in ZIP archive")

        skill_text = ""
        files: Dict[str, SkillFile] = {}
        for info, path in members:
            if base.parts and path.parts[: len(base.parts)] != base.parts:
                continue
            rel = PurePosixPath(*path.parts[len(base.parts) :]).as_posix()
            try:
                content = zf.read(info).decode("utf-8")
            except UnicodeDecodeError:
                continue
            if rel == SKILL_MD:
                skill_text = content
            elif should_include_file(rel):
                files[rel] = SkillFile(content=content, file_type=detect_file_type(rel))

    return LoadedSkill(skill=parse_skill_md(skill_text), files=files)


def list_marketplace_skills(skills_dir: Path) -> List[MarketplaceSkillInfo]:
    """
    列出目录下可加载的 skill（每个子目录一个 skill）。

    说明：
    - 目录不存在返回空列表；
    - 无法读取或解析的 SKILL.md 记录 warning 后跳过。
    """

    root = Path(skills_dir)
    if not root.is_dir():
        return []

    out: List[MarketplaceSkillInfo] = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        skill_md = entry / SKILL_MD
        if not entry.is_dir() or not skill_md.exists():
            continue
        try:
            parsed = parse_skill_md(skill_md.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, SkillParseError) as e:
            logger.warning("failed to load SKILL.md in %s: %s", entry, e)
            continue
        out.append(
            MarketplaceSkillInfo(
                name=parsed.name,
                display_title=parsed.description[:50] + "...",
                description=parsed.description,
                category=parsed.category,
                dir_name=entry.name,
                dir_path=str(entry),
            )
        )
    return out


def load_skills_from_roots(roots: List[Path]) -> List[LoadedSkill]:
    """加载多个 skills 根目录下的全部 skill（坏 skill 记录 warning 后跳过；同名以先出现者为准）。"""

    loaded: Dict[str, LoadedSkill] = {}
    for root in roots:
        for info in list_marketplace_skills(Path(root)):
            if info.name in loaded:
                logger.warning("duplicate skill name %s in %s ignored", info.name, info.dir_path)
                continue
            try:
                loaded[info.name] = load_skill_from_dir(Path(info.dir_path))
            except (SkillLoadError, SkillParseError) as e:
                logger.warning("failed to load skill %s: %s", info.dir_path, e)
    return list(loaded.values())
