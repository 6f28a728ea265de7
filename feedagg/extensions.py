from flask_login import LoginManager

login_manager = LoginManager()

__all__ = ["login_manager"]
