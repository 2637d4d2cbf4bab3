#main.py
"""The central script. `run` launches the redirecting proxy and a browser that uses it, keeps the rules in sync with config.yaml while the browser is open, and shuts everything down afterwards. The other commands edit the settings from the terminal.
"""


import argparse
import os
import sys
import time
import subprocess
import logging
from concurrent import futures
#py files
import blocker
import store
from editor import Editor
from errors import SyncError
from watcher import ConfigWatcher

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - [main.py] - %(message)s')

DEFAULT_PROXY_PORT = 8080
DEFAULT_BROWSER = ["microsoft-edge-stable", "--no-first-run"]
SYNC_TIMEOUT_SECONDS = 30
ADDON_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "redirector.py")


def build_parser():
    parser = argparse.ArgumentParser(prog="redirector", description="Redirect blocked websites to a URL of your choice.")
    parser.add_argument("--config", default=store.CONFIG_PATH, help="settings file (default: %(default)s)")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("run", help="start the proxy and a browser, keep rules in sync (default)")
    commands.add_parser("list", help="show the current settings")
    add = commands.add_parser("add", help="block a website")
    add.add_argument("website")
    remove = commands.add_parser("remove", help="unblock a website")
    remove.add_argument("website")
    commands.add_parser("clear", help="unblock all websites")
    commands.add_parser("toggle", help="turn redirecting on or off")
    redirect = commands.add_parser("set-redirect", help="set the URL blocked websites redirect to")
    redirect.add_argument("url")
    commands.add_parser("sync", help="rebuild the redirect rules now")
    return parser


def open_rule_store(config_store):
    settings = config_store.get(["rules_db"])
    return blocker.RuleStore(settings.get("rules_db", blocker.RULES_DB_PATH))


def print_state(websites, redirect_url, enabled):
    print(f"Redirector: {'enabled' if enabled else 'disabled'}")
    print(f"Redirect URL: {redirect_url}")
    if not websites:
        print("No websites blocked")
    for website in websites:
        print(f"  {website}")


def edit(config_store, command, args):
    try:
        rule_store = open_rule_store(config_store)
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    watcher = ConfigWatcher(config_store, rule_store)
    editor = Editor(config_store, watcher)
    try:
        if command == "add":
            result = editor.add_domain(args.website)
        elif command == "remove":
            result = editor.remove_domain(args.website)
        elif command == "clear":
            result = editor.clear_domains()
        elif command == "toggle":
            result = editor.toggle_enabled()
        elif command == "set-redirect":
            result = editor.set_redirect_url(args.url)
        else:
            result = editor.sync_now()

        sync_result = watcher.process_pending()
        print(result.message)
        if sync_result is not None and not sync_result.ok:
            print(f"Rules were not updated: {sync_result.error}", file=sys.stderr)
            return 1
        return 0
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        rule_store.close()


def run(config_store):
    first_run = not config_store.exists()
    settings = config_store.get()
    evaluation_interval = settings.get('evaluation_interval_seconds', 5)
    proxy_port = settings.get('proxy_port', DEFAULT_PROXY_PORT)
    browser_cmd = settings.get('browser', DEFAULT_BROWSER)
    mitmdump_path = settings.get('mitmdump_path', "venv/bin/mitmdump")

    rule_store = open_rule_store(config_store)
    watcher = ConfigWatcher(config_store, rule_store)
    watcher.start()

    proxy_proc = None
    browser_proc = None

    try:
        # --- 1. Bring rules up to date ---
        try:
            pending = watcher.on_installed() if first_run else watcher.on_startup()
            result = pending.result(timeout=SYNC_TIMEOUT_SECONDS)
        except (SyncError, futures.TimeoutError) as e:
            logging.error(f"Initial sync did not finish ({type(e).__name__}): {e}")
            result = None
        if result is None or not result.ok:
            logging.warning("Starting without up-to-date rules, will retry on the next settings change.")

        # --- 2. Launch Subprocesses ---
        logging.info("Starting mitmproxy redirector...")
        env = dict(os.environ, REDIRECTOR_RULES_DB=rule_store.db_path)
        proxy_proc = subprocess.Popen([
            mitmdump_path,
            "-s", ADDON_PATH,
            "-p", str(proxy_port),
            "--set", "block_global=false" # Prevents mitmproxy from blocking connections itself
        ], env=env)

        logging.info("Launching browser...")
        # Give the proxy a moment to start up
        time.sleep(2)
        browser_proc = subprocess.Popen(list(browser_cmd) + [f"--proxy-server=http://127.0.0.1:{proxy_port}"])

        # --- 3. Main Monitoring Loop ---
        logging.info("Redirector is active. Close the browser window or press Ctrl+C to stop.")
        while browser_proc.poll() is None:
            try:
                config_store.poll() # change notifications reach the watcher from here
            except SyncError as e:
                logging.error(f"Could not read settings: {e}")
            time.sleep(evaluation_interval)

    except KeyboardInterrupt:
        logging.info("Ctrl+C detected. Shutting down...")
    except Exception as e:
        logging.error(f"An unexpected error occurred: {e}")
    finally:
        # --- 4. Cleanup ---
        logging.info("Cleaning up processes...")
        if browser_proc and browser_proc.poll() is None:
            browser_proc.terminate()
            browser_proc.wait(timeout=5)
        if proxy_proc and proxy_proc.poll() is None:
            proxy_proc.terminate()
            proxy_proc.wait(timeout=5)

        watcher.stop()
        rule_store.close()
        logging.info("Redirector has been shut down.")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    config_store = store.ConfigStore(args.config)
    command = args.command or "run"

    if command in ("run", "list"):
        try:
            if command == "run":
                return run(config_store)
            print_state(*Editor(config_store).load_state())
            return 0
        except SyncError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    return edit(config_store, command, args)


if __name__ == "__main__":
    sys.exit(main())
