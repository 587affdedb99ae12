"""
プロジェクト操作ロジック
認証済みユーザーのみ。作成・変更・削除は trial / plus プランに限る
"""
import logging
from typing import List, Optional

from ..cloud.api_client import ApiClient
from ..errors import PomoflowError, ForbiddenError, NotFoundError, ValidationError
from ..models import Project, validate_project_name
from .identity import IdentityResolver, IdentityState
from .task_store import TaskStoreFacade

logger = logging.getLogger(__name__)


class ProjectFacade:
    """プロジェクト操作の窓口"""

    def __init__(self, identity: IdentityResolver, api: ApiClient,
                 task_facade: Optional[TaskStoreFacade] = None):
        self.identity = identity
        self.api = api
        self.task_facade = task_facade
        self.projects: List[Project] = []
        self.error: Optional[str] = None

    async def _require_authenticated(self):
        state = await self.identity.wait_resolved()
        if state != IdentityState.AUTHENTICATED:
            self.projects = []
            raise ForbiddenError("Projects are only available to logged-in users.")

    async def _require_premium(self):
        await self._require_authenticated()
        if not self.identity.is_premium:
            raise ForbiddenError("Access denied. You need a trial or plus plan to use this feature.")

    def _fail(self, action: str, error: PomoflowError):
        self.error = f"{action}: {error.message}"
        logger.error(self.error)

    def get(self, project_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def _check_duplicate(self, name: str, exclude_id: Optional[str] = None):
        for project in self.projects:
            if project.name == name and project.id != exclude_id:
                raise ValidationError("Project with this name already exists for your account.")

    async def list(self) -> List[Project]:
        """プロジェクト一覧（freeプランも閲覧は可能）"""
        await self._require_authenticated()
        self.error = None
        try:
            data = await self.api.get("/projects")
        except PomoflowError as e:
            self._fail("Failed to fetch projects", e)
            raise
        if not isinstance(data, list):
            logger.warning("プロジェクト一覧が配列ではありません: %r", data)
            data = []
        self.projects = [Project.from_dict(item) for item in data]
        return list(self.projects)

    async def create(self, name: str) -> Project:
        """プロジェクトを作成"""
        await self._require_premium()
        name = validate_project_name(name)
        self._check_duplicate(name)
        self.error = None
        try:
            data = await self.api.post("/projects", {"name": name})
        except PomoflowError as e:
            self._fail("Failed to add project", e)
            raise
        project = Project.from_dict(data)
        self.projects.insert(0, project)
        return project

    async def rename(self, project_id: str, name: str) -> Project:
        """プロジェクト名を変更（現在と同じ名前ならそのまま成功）"""
        await self._require_premium()
        name = validate_project_name(name)
        self._check_duplicate(name, exclude_id=project_id)
        self.error = None
        try:
            data = await self.api.put(f"/projects/{project_id}", {"name": name})
        except PomoflowError as e:
            self._fail("Failed to update project", e)
            raise
        project = Project.from_dict(data)
        for i, existing in enumerate(self.projects):
            if existing.id == project.id:
                self.projects[i] = project
                break
        return project

    async def delete(self, project_id: str):
        """プロジェクトを削除（タスクは削除せず参照を外す）"""
        await self._require_premium()
        self.error = None
        try:
            await self.api.delete(f"/projects/{project_id}")
        except PomoflowError as e:
            self._fail("Failed to delete project", e)
            if isinstance(e, NotFoundError):
                self.projects = [p for p in self.projects if p.id != project_id]
            raise
        self.projects = [p for p in self.projects if p.id != project_id]
        if self.task_facade is not None:
            self.task_facade.detach_project(project_id)
