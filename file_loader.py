import math
import os

from memory_model import ProcessDescriptor

PAGE_SIZE = 4096


def format_bytes(size, decimals=2):
    """Human readable size, e.g. 1536 -> '1.5 KB'"""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, max(decimals, 0)):g} {units[i]}"


def pages_for(size_bytes, page_size=PAGE_SIZE):
    if page_size <= 0:
        raise ValueError(f"page size must be positive, got {page_size}")
    return math.ceil(size_bytes / page_size)


def descriptor_from_file(path, process_id, page_size=PAGE_SIZE):
    """Treat a file on disk as a process whose pages cover the file's size"""
    size = os.path.getsize(path)
    return ProcessDescriptor(
        id=process_id,
        name=os.path.basename(path),
        page_count=pages_for(size, page_size),
        size_bytes=size,
    )


def load_descriptors(paths, page_size=PAGE_SIZE, start_id=0):
    """Descriptors for each path, ids assigned in load order"""
    return [descriptor_from_file(p, start_id + i, page_size) for i, p in enumerate(paths)]


def synthetic_descriptors(count, page_count=8):
    """Stand-in processes when no files are given"""
    return [ProcessDescriptor(id=i, name=f"P{i}", page_count=page_count) for i in range(count)]
