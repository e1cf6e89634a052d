"""
Error taxonomy for Challyme
Every expected failure is raised as an AppError and turned into a JSON
{"error": message} response by the handlers registered in app.py
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 400


class Forbidden(AppError):
    status_code = 403


class ValidationError(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class ServerError(AppError):
    status_code = 500


class AlreadyConfirmedToday(Conflict):
    def __init__(self, message='You have already confirmed today.'):
        super().__init__(message)


class MustConfirmFirst(Forbidden):
    def __init__(self, message='You have to confirm today before you can poke someone.'):
        super().__init__(message)


class TargetAlreadyConfirmed(Forbidden):
    def __init__(self, message='Your friend has already confirmed today.'):
        super().__init__(message)
