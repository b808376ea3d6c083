import os
from datetime import date, timedelta

import pytest

from book import Book
from database import MemoryRecordStore
from library import Library


class FakeClock:
    """Callable stand-in for date.today that tests can move forward."""

    def __init__(self, today: date):
        self.current = today

    def __call__(self) -> date:
        return self.current

    def advance(self, days: int) -> None:
        self.current += timedelta(days=days)


# Same collection the web front end ships as its demo data
SAMPLE_RECORDS = [
    {
        "id": "1", "title": "三体", "author": "刘慈欣", "isbn": "978-7-5366-9293-0",
        "category": "科幻", "publishDate": "2008-01-01", "status": "AVAILABLE",
        "summary": "文化大革命如火如荼进行的同时，军方探寻外星文明的绝秘计划“红岸工程”取得了突破性进展。",
        "coverUrl": "https://picsum.photos/200/300?random=1",
        "borrowHistory": [
            {"borrowerName": "李四", "borrowDate": "2024-08-01", "returnDate": "2024-08-15"},
            {"borrowerName": "王五", "borrowDate": "2024-09-10", "returnDate": "2024-09-25"},
        ],
    },
    {
        "id": "2", "title": "百年孤独", "author": "加西亚·马尔克斯", "isbn": "978-7-5442-4530-7",
        "category": "文学", "publishDate": "1967-05-30", "status": "BORROWED",
        "summary": "描写了布恩迪亚家族七代人的传奇故事。",
        "coverUrl": "https://picsum.photos/200/300?random=2",
        "borrowerName": "张三", "borrowDate": "2024-11-15", "dueDate": "2024-12-15",
        "borrowHistory": [
            {"borrowerName": "赵六", "borrowDate": "2024-06-01", "returnDate": "2024-06-20"},
            {"borrowerName": "张三", "borrowDate": "2024-11-15"},
        ],
    },
    {
        "id": "3", "title": "Clean Code", "author": "Robert C. Martin", "isbn": "978-0132350884",
        "category": "技术", "publishDate": "2008-08-01", "status": "AVAILABLE",
        "summary": "Even bad code can function.",
        "coverUrl": "https://picsum.photos/200/300?random=3",
        "borrowHistory": [
            {"borrowerName": "李四", "borrowDate": "2024-07-01", "returnDate": "2024-07-14"},
            {"borrowerName": "李四", "borrowDate": "2024-10-05", "returnDate": "2024-10-25"},
            {"borrowerName": "王五", "borrowDate": "2024-11-01", "returnDate": "2024-11-10"},
        ],
    },
    {
        "id": "4", "title": "活着", "author": "余华", "isbn": "978-7-5063-6543-7",
        "category": "文学", "publishDate": "1993-01-01", "status": "AVAILABLE",
        "summary": "讲述了农村人福贵悲惨的人生遭遇。",
        "coverUrl": "https://picsum.photos/200/300?random=4",
        "borrowHistory": [],
    },
    {
        "id": "5", "title": "JavaScript高级程序设计", "author": "Matt Frisbie", "isbn": "978-7-115-54538-1",
        "category": "技术", "publishDate": "2020-09-01", "status": "AVAILABLE",
        "summary": "本书是JavaScript经典图书的新版。",
        "coverUrl": "https://picsum.photos/200/300?random=5",
        "borrowHistory": [
            {"borrowerName": "张三", "borrowDate": "2024-05-10", "returnDate": "2024-05-20"},
        ],
    },
]


@pytest.fixture
def clock():
    return FakeClock(date(2024, 3, 1))


@pytest.fixture
def sample_books():
    return [Book.from_dict(record) for record in SAMPLE_RECORDS]


@pytest.fixture
def lib(clock):
    # Each test gets its own in-memory collection
    return Library(store=MemoryRecordStore(), clock=clock)


@pytest.fixture
def sample_lib(sample_books, clock):
    return Library(store=MemoryRecordStore(sample_books), clock=clock)


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    yield db_file
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def sqlite_lib(db_file, clock):
    return Library(db_file=db_file, clock=clock)


@pytest.fixture
def events(lib):
    received = []
    lib.subscribe(received.append)
    return received
