"""Simple example: bind a storage URL to a session key and recover it."""
import uuid

from videodrm.encryption import cipher
from videodrm.errors import DecryptionError


def demo():
	url = "https://storage.local/videos/course/lesson-1.mp4?expires=1700000300&signature=abc"
	session_id = str(uuid.uuid4())
	key = cipher.generate_key()

	token = cipher.encrypt_url(url, key, session_id)
	print("Encrypted:", token)
	print("Roundtrip ok:", cipher.decrypt_url(token, key, session_id) == url)

	try:
		cipher.decrypt_url(token, key, str(uuid.uuid4()))
	except DecryptionError as e:
		print("Other session rejected:", e.message)


if __name__ == "__main__":
	demo()
