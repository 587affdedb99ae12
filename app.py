"""
Pomoflow - Flask API Server
セッションはHTTP-only Cookie（署名付き）で管理する
"""
import logging
import os
from datetime import timedelta
from functools import wraps

from flask import Flask, request, jsonify, session, g

from pomoflow.config import Settings
from pomoflow.database import Database
from pomoflow.errors import PomoflowError, AuthenticationError, AuthorizationError
from pomoflow.models import PREMIUM_PLANS

logger = logging.getLogger(__name__)

# レポートは固定のモックデータ（集計は行わない）
MOCK_REPORT = {
    "summary": {"totalHours": "47h", "daysAccessed": 23, "streak": "6🔥"},
    "detail": [
        {"date": "2025-05-30", "task": "Pomoflow UI", "hours": 2.6},
        {"date": "2025-05-29", "task": "API Integration", "hours": 3.0},
    ],
    "rankings": [
        {"name": "🧑 Alex", "hours": "54h"},
        {"name": "🧑 Jamie", "hours": "48h"},
        {"name": "🧑 You", "hours": "47h"},
    ],
}


def create_app(settings: Settings = None, db: Database = None) -> Flask:
    """アプリケーションを生成"""
    settings = settings or Settings.from_env()
    db = db or Database(settings.db_path)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=settings.cookie_secure,
        PERMANENT_SESSION_LIFETIME=timedelta(days=7),
    )
    app.extensions["pomoflow_db"] = db

    # ============ HELPERS ============

    def body() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def login_required(view):
        """セッションのユーザーを g.user に設定（なければ401）"""
        @wraps(view)
        def wrapper(*args, **kwargs):
            user_id = session.get("user_id")
            user = db.get_user(user_id) if user_id else None
            if user is None:
                raise AuthenticationError("Unauthorized")
            g.user = user
            return view(*args, **kwargs)
        return wrapper

    def plan_required(*plans):
        """プランで利用を制限（ログイン済みが前提）"""
        def decorator(view):
            @wraps(view)
            def wrapper(*args, **kwargs):
                if g.user.plan not in plans:
                    logger.info("プラン不足でアクセス拒否: user=%s plan=%s", g.user.id, g.user.plan)
                    if g.user.plan == "free":
                        raise AuthorizationError(
                            "Access denied. You need a trial or plus plan to use this feature.")
                    raise AuthorizationError("Access denied. This feature requires an upgraded plan.")
                return view(*args, **kwargs)
            return wrapper
        return decorator

    def start_session(user):
        session.clear()
        session.permanent = True
        session["user_id"] = user.id

    # ============ AUTH ============

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        """新規登録（トライアルプランで開始）"""
        data = body()
        user = db.create_user(data.get('email'), data.get('username'), data.get('password'))
        start_session(user)
        logger.info("ユーザー登録: %s", user.username)
        return jsonify({**user.to_dict(), "msg": "User registered and logged in successfully"})

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        """メールアドレスまたはユーザー名でログイン"""
        data = body()
        user = db.verify_credentials(
            data.get('password'),
            email=data.get('email'),
            username=data.get('username'),
        )
        start_session(user)
        return jsonify({**user.to_dict(), "msg": "Logged in successfully"})

    @app.route('/api/auth/logout', methods=['POST'])
    def logout():
        """ログアウト（Cookieを削除）"""
        session.clear()
        return jsonify({"msg": "Logged out successfully"})

    @app.route('/api/auth/me')
    @login_required
    def me():
        """ログイン中のユーザー情報"""
        return jsonify(g.user.to_dict())

    # ============ TASKS ============

    @app.route('/api/tasks', methods=['GET'])
    @login_required
    def get_tasks():
        """タスク一覧（新しい順）"""
        return jsonify([task.to_dict() for task in db.get_tasks(g.user.id)])

    @app.route('/api/tasks', methods=['POST'])
    @login_required
    def create_task():
        """タスク作成"""
        data = body()
        task = db.create_task(
            g.user.id,
            data.get('text'),
            data.get('pomodoros') or 1,
            data.get('projectId'),
        )
        return jsonify(task.to_dict()), 201

    @app.route('/api/tasks/<task_id>', methods=['PUT'])
    @login_required
    def update_task(task_id):
        """タスク更新（指定されたフィールドのみ）"""
        return jsonify(db.update_task(task_id, g.user.id, body()).to_dict())

    @app.route('/api/tasks/<task_id>/incrementPomodoro', methods=['PUT'])
    @login_required
    def increment_task_pomodoro(task_id):
        """完了ポモドーロ数を1増やす"""
        return jsonify(db.increment_task_pomodoro(task_id, g.user.id).to_dict())

    @app.route('/api/tasks/<task_id>/toggleCompleted', methods=['PUT'])
    @login_required
    def toggle_task_completed(task_id):
        """完了フラグを反転"""
        return jsonify(db.toggle_task_completed(task_id, g.user.id).to_dict())

    @app.route('/api/tasks/<task_id>', methods=['DELETE'])
    @login_required
    def delete_task(task_id):
        """タスク削除"""
        db.delete_task(task_id, g.user.id)
        return jsonify({"msg": "Task removed"})

    # ============ PROJECTS ============

    @app.route('/api/projects', methods=['GET'])
    @login_required
    def get_projects():
        """プロジェクト一覧（閲覧は全プラン可）"""
        return jsonify([project.to_dict() for project in db.get_projects(g.user.id)])

    @app.route('/api/projects', methods=['POST'])
    @login_required
    @plan_required(*PREMIUM_PLANS)
    def create_project():
        """プロジェクト作成"""
        project = db.create_project(g.user.id, body().get('name'))
        return jsonify(project.to_dict()), 201

    @app.route('/api/projects/<project_id>', methods=['PUT'])
    @login_required
    @plan_required(*PREMIUM_PLANS)
    def update_project(project_id):
        """プロジェクト名変更"""
        project = db.rename_project(project_id, g.user.id, body().get('name'))
        return jsonify(project.to_dict())

    @app.route('/api/projects/<project_id>', methods=['DELETE'])
    @login_required
    @plan_required(*PREMIUM_PLANS)
    def delete_project(project_id):
        """プロジェクト削除（タスクは参照を外すだけ）"""
        detached = db.delete_project(project_id, g.user.id)
        return jsonify({"msg": "Project deleted and associated tasks updated successfully",
                        "detachedTasks": detached})

    # ============ USERS ============

    @app.route('/api/users/cycles/increment', methods=['PUT'])
    @login_required
    def increment_user_cycles():
        """今日のサイクル数を加算"""
        return jsonify({"cycles": db.increment_cycles(g.user.id)})

    # ============ REPORTS ============

    @app.route('/api/reports')
    @login_required
    def reports():
        """レポート（モック）"""
        return jsonify(MOCK_REPORT)

    # ============ ERROR HANDLERS ============

    @app.errorhandler(PomoflowError)
    def handle_pomoflow_error(e):
        return jsonify({"msg": e.message}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"msg": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"msg": "Method not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("サーバーエラー: %s", e)
        return jsonify({"msg": "Server error"}), 500

    return app


# ============ MAIN ============

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get('PORT', 8080))
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    create_app().run(host='0.0.0.0', port=port, debug=debug)
