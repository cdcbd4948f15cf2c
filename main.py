import sys

from PyQt5.QtWidgets import QApplication

from gui.main_window import MainWindow
from utils.settings import APP_CONFIG_PATH, load_app_config


#  main controller class
class AppController:
    """Creates the Qt application and the main window."""

    def __init__(self):
        self.app = QApplication(sys.argv)

        print("🚀 Starting Emotion Detector...")
        if APP_CONFIG_PATH.exists():
            print(f"  ✅ Using overrides from {APP_CONFIG_PATH.name}")
        self.config = load_app_config()

        self.main_window = MainWindow(config=self.config)
        self.main_window.show()
        print("✅ Main Window is now active and visible")

    # run app
    def run(self):
        return self.app.exec_()


def main():
    controller = AppController()
    return controller.run()


if __name__ == "__main__":
    sys.exit(main())
