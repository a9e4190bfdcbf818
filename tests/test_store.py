import os
import shutil
import sys
import tempfile
import threading
import unittest

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cacheproxy.store import FileCacheStore


class TestFileCacheStore(unittest.TestCase):
    """Test cases for the file system cache store."""

    def setUp(self):
        """Set up a temporary cache directory."""
        self.cache_dir = tempfile.mkdtemp()
        self.store = FileCacheStore()
        self.path = os.path.join(self.cache_dir, "example.com", "index")

    def test_write_and_read(self):
        """Test storing and loading an entry, creating directories on the way."""
        # Act
        stored = self.store.write(self.path, b"HTTP/1.1 200 OK\r\n\r\nbody")

        # Assert
        self.assertTrue(stored)
        self.assertTrue(self.store.exists(self.path))
        self.assertEqual(self.store.read(self.path), b"HTTP/1.1 200 OK\r\n\r\nbody")

    def test_missing_entry(self):
        """Test that a missing entry reads as None."""
        self.assertIsNone(self.store.read(self.path))
        self.assertFalse(self.store.exists(self.path))

    def test_abort_keeps_previous_entry(self):
        """Test that an aborted write leaves the old entry and no temporary file."""
        # Arrange
        self.store.write(self.path, b"old")

        # Act
        entry = self.store.open_entry(self.path)
        entry.write(b"partial")
        entry.abort()

        # Assert
        self.assertEqual(self.store.read(self.path), b"old")
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["index"])

    def test_entry_is_released_after_commit(self):
        """Test that the entry lock is free again once a writer is done."""
        # Act
        entry = self.store.open_entry(self.path)
        entry.write(b"data")
        entry.commit()

        # Assert
        self.assertEqual(self.store.active_locks, 0)
        self.assertFalse(entry.commit())

    def test_locks_do_not_outlive_writers(self):
        """Test that writing many distinct entries leaves no locks behind."""
        # Act
        for i in range(500):
            self.store.write(os.path.join(self.cache_dir, f"entry{i}"), b"x")
        entry = self.store.open_entry(self.path)

        # Assert
        self.assertEqual(self.store.active_locks, 1)
        entry.abort()
        self.assertEqual(self.store.active_locks, 0)

    def test_waiting_writer_gets_the_entry(self):
        """Test that a writer blocked on a busy entry proceeds once it is released."""
        # Arrange
        first = self.store.open_entry(self.path)
        first.write(b"first")
        done = threading.Event()

        def second_writer():
            self.store.write(self.path, b"second")
            done.set()

        thread = threading.Thread(target=second_writer)

        # Act
        thread.start()
        self.assertFalse(done.wait(0.2))
        first.commit()
        thread.join(timeout=5)

        # Assert
        self.assertTrue(done.is_set())
        self.assertEqual(self.store.read(self.path), b"second")
        self.assertEqual(self.store.active_locks, 0)

    def test_concurrent_writers(self):
        """Test that concurrent writers leave exactly one complete entry."""
        # Arrange
        payloads = [bytes([65 + i]) * 100000 for i in range(8)]

        def writer(data):
            self.store.write(self.path, data)

        threads = [threading.Thread(target=writer, args=(data,)) for data in payloads]

        # Act
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        # Assert
        self.assertIn(self.store.read(self.path), payloads)
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["index"])

    def test_uncreatable_directory(self):
        """Test that a cache directory that cannot be created raises OSError."""
        # Arrange
        blocker = os.path.join(self.cache_dir, "blocker")
        with open(blocker, "w") as f:
            f.write("not a directory")

        # Act and Assert
        with self.assertRaises(OSError):
            self.store.open_entry(os.path.join(blocker, "entry"))
        self.assertEqual(self.store.active_locks, 0)

    def tearDown(self):
        """Remove the temporary cache directory."""
        shutil.rmtree(self.cache_dir, ignore_errors=True)


if __name__ == '__main__':
    unittest.main()
