MASK = '••••'
SECRET_MASK = '••••••••••••'


def mask_identifier(value: str | None) -> str:
	"""Show only the first and last four characters of an identifier."""
	if not value or len(value) < 8:
		return MASK * 2
	return f'{value[:4]}{MASK}{value[-4:]}'


def mask_secret(value: str | None) -> str:
	"""Short prefix for log lines; never the whole value."""
	if not value:
		return '<empty>'
	return f'{value[:4]}...'
