from pathlib import Path
import os, secrets, shutil, tempfile, logging

logger = logging.getLogger(__name__)


class SecureString:
    def __init__(self, initial_value=None):
        self._value = bytearray(initial_value.encode('utf-8')) if initial_value else bytearray()

    def get_value(self):
        return self._value.decode('utf-8') if self._value else ''

    def __bool__(self):
        return bool(self._value)

    def clear(self):
        if self._value:
            try:
                for i in range(len(self._value)):
                    self._value[i] = secrets.randbelow(256)
            finally:
                del self._value[:]
                self._value = bytearray()


class AskpassEnvironment:
    """Temporary SUDO_ASKPASS helper that feeds a password to ``sudo -A``.

    The password file lives in a private 0700 directory and is overwritten with
    random bytes before removal.
    """

    def __init__(self, sudo_password: SecureString):
        self.sudo_password = sudo_password
        self.temp_dir = None
        self.askpass_script_path = None
        self.password_file = None

    def __enter__(self):
        self.create()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def create(self):
        self.temp_dir = tempfile.mkdtemp(prefix="install_helper_")
        os.chmod(self.temp_dir, 0o700)
        self.askpass_script_path = Path(self.temp_dir, 'askpass.sh')
        self.askpass_script_path.write_text('#!/bin/sh\ncat "$SUDO_PASSWORD_FILE"\n', encoding='utf-8')
        os.chmod(self.askpass_script_path, 0o700)
        self.password_file = Path(self.temp_dir, 'sudo_pass')
        self.password_file.write_text(self.sudo_password.get_value(), encoding='utf-8')
        os.chmod(self.password_file, 0o600)

    def apply(self, env):
        if not self.askpass_script_path:
            return env
        env['SUDO_ASKPASS'] = str(self.askpass_script_path)
        env['SUDO_PASSWORD_FILE'] = str(self.password_file)
        return env

    def cleanup(self):
        if not self.temp_dir or not Path(self.temp_dir).exists():
            return
        for filename in ('sudo_pass', 'askpass.sh'):
            file_path = Path(self.temp_dir, filename)
            if file_path.exists():
                try:
                    with open(file_path, 'wb') as f:
                        f.write(os.urandom(3072))
                    file_path.unlink()
                except OSError as e:
                    logger.warning(f"Error securely removing {filename}: {e}")
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        self.temp_dir = self.askpass_script_path = self.password_file = None
