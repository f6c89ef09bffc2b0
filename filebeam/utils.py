from colorama import init, Fore, Style

init(autoreset=False)

brightgreen = "\001" + Style.BRIGHT + Fore.GREEN + "\002"
brightyellow = "\001" + Style.BRIGHT + Fore.YELLOW + "\002"
brightred = "\001" + Style.BRIGHT + Fore.RED + "\002"
brightblue = "\001" + Style.BRIGHT + Fore.BLUE + "\002"
reset = Style.RESET_ALL


def echo(msg: str, to_console: bool = True, color=None, _raw_printer=print, end="\n"):
	if not to_console:
		return
	if color:
		msg = color + msg + reset
	_raw_printer(msg, end=end)
