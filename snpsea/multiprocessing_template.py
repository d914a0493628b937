"""Persistent worker processes driven by shared flags, and a serial stand-in for debugging."""

import logging
import time
from abc import ABC, abstractmethod
from multiprocessing import Array, Process, Value, cpu_count
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

FLAGS = {
    'ERROR': -2,
    'SHUTDOWN': -1,
    'FINISHED': 0,
    'COMPUTE': 1,
}


class SharedData:
    """Named float64 buffers in shared memory.

    A key created with size None holds a single float; any other key holds
    an array of that size. Arrays are read as numpy views.
    """

    def __init__(self, sizes: Dict[str, Optional[int]]):
        self._buffers = {
            key: Value('d', 0.0) if size is None else Array('d', size)
            for key, size in sizes.items()
        }

    def _is_array(self, key: str) -> bool:
        return hasattr(self._buffers[key], 'get_obj')

    def __getitem__(self, key: Union[str, Tuple[str, Union[slice, int]]]) -> Union[np.ndarray, float]:
        if isinstance(key, tuple):
            name, index = key
            return self[name][index]
        if self._is_array(key):
            return np.frombuffer(self._buffers[key].get_obj(), dtype=np.float64)
        return self._buffers[key].value

    def __setitem__(self, key: Union[str, Tuple[str, Union[slice, int]]],
                    value: Union[np.ndarray, float]):
        if isinstance(key, tuple):
            name, index = key
            if not self._is_array(name):
                raise ValueError(f"'{name}' holds a single value and cannot be indexed")
            self._buffers[name][index] = value
        elif self._is_array(key):
            np.copyto(self[key], value)
        else:
            self._buffers[key].value = float(value)


class WorkerManager:
    """Starts worker processes and signals them through one flag per worker.

    Attributes:
        flags: shared integer flag of each worker, see FLAGS
        processes: worker processes
    """

    def __init__(self, num_processes: int):
        self.flags = [Value('i', FLAGS['FINISHED']) for _ in range(num_processes)]
        self.processes: List[Process] = []

    def add_process(self, target: Callable, args: Tuple) -> None:
        process = Process(target=target, args=args)
        process.start()
        self.processes.append(process)

    def start_workers(self, flag: Optional[int] = None) -> None:
        """Ask every worker to process the current task."""
        for f in self.flags:
            f.value = flag or FLAGS['COMPUTE']

    def await_workers(self) -> None:
        """Block until every worker has finished the current task.

        Raises:
            RuntimeError: if a worker failed or exited
        """
        while any(f.value >= FLAGS['COMPUTE'] for f in self.flags):
            if not all(process.is_alive() for process in self.processes):
                raise RuntimeError("A worker process exited before finishing its task")
            time.sleep(0.001)
        if any(f.value == FLAGS['ERROR'] for f in self.flags):
            raise RuntimeError("A worker process failed, see the log for the traceback")

    def shutdown(self) -> None:
        for f in self.flags:
            f.value = FLAGS['SHUTDOWN']
        for process in self.processes:
            process.join()


class SerialManager(WorkerManager):
    """Runs each worker's share of a task in this process, one after another."""

    def __init__(self, num_processes: int):
        super().__init__(num_processes)
        self._workers: List[Tuple[Callable, Tuple]] = []

    def add_process(self, target: Callable, args: Tuple) -> None:
        self._workers.append((target, args))

    def start_workers(self, flag: Optional[int] = None) -> None:
        super().start_workers(flag)
        for target, args in self._workers:
            target(*args)

    def await_workers(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


class ParallelProcessor(ABC):
    """Base class for work split across a fixed pool of processes.

    Workers receive a read-only context once, when they start. The supervisor
    then posts tasks by writing parameters into shared memory and raising the
    workers' flags; each worker does its share and writes its result into its
    own part of shared memory. Subclasses implement create_shared_memory,
    supervise and process_task, and usually prepare_context.
    """

    @classmethod
    def prepare_context(cls, **kwargs) -> Any:
        """Read-only data given to every worker. None unless overridden."""
        return None

    @classmethod
    @abstractmethod
    def create_shared_memory(cls, num_workers: int, **kwargs) -> SharedData:
        """Allocate the shared buffers used to post tasks and collect results."""

    @classmethod
    @abstractmethod
    def supervise(cls, manager: WorkerManager, shared_data: SharedData, **kwargs) -> Any:
        """Post tasks with manager.start_workers, wait with manager.await_workers, and return the results."""

    @classmethod
    @abstractmethod
    def process_task(cls, context: Any, flag: Value, shared_data: SharedData,
                     worker_index: int, num_workers: int, worker_params: Any = None) -> None:
        """Do this worker's share of the task currently posted in shared_data.

        Args:
            context: value returned by prepare_context
            flag: this worker's flag; must not be changed
            shared_data: task parameters and results
            worker_index: position of this worker, 0 to num_workers - 1
            num_workers: number of workers sharing the task
            worker_params: optional extra argument given to run
        """

    @classmethod
    def worker(cls, context: Any, flag: Value, shared_data: SharedData,
               worker_index: int, num_workers: int, worker_params: Any = None) -> None:
        """Loop of a worker process: wait for a flag, process the task, report back."""
        try:
            while True:
                while flag.value == FLAGS['FINISHED']:
                    time.sleep(0.001)
                if flag.value == FLAGS['SHUTDOWN']:
                    break
                cls.process_task(context, flag, shared_data, worker_index, num_workers, worker_params)
                flag.value = FLAGS['FINISHED']
        except Exception:
            logging.exception(f"Worker {worker_index} failed")
            flag.value = FLAGS['ERROR']

    @classmethod
    def serial_worker(cls, context: Any, flag: Value, shared_data: SharedData,
                      worker_index: int, num_workers: int, worker_params: Any = None) -> None:
        """Process one task in the calling process. Exceptions propagate."""
        if flag.value < FLAGS['COMPUTE']:
            raise ValueError("Serial worker started without a task")
        cls.process_task(context, flag, shared_data, worker_index, num_workers, worker_params)
        flag.value = FLAGS['FINISHED']

    @classmethod
    def _start(cls, manager: WorkerManager, target: Callable, num_workers: int,
               worker_params: Any, **kwargs) -> Any:
        context = cls.prepare_context(**kwargs)
        shared_data = cls.create_shared_memory(num_workers, **kwargs)
        for i in range(num_workers):
            manager.add_process(
                target=target,
                args=(context, manager.flags[i], shared_data, i, num_workers, worker_params),
            )
        try:
            return cls.supervise(manager, shared_data, **kwargs)
        finally:
            manager.shutdown()

    @classmethod
    def run(cls, num_processes: Optional[int] = None, worker_params: Any = None, **kwargs) -> Any:
        """Run with worker processes.

        Args:
            num_processes: number of processes, capped at the number of processors; None -> all processors
            worker_params: optional extra argument passed to every worker
            **kwargs: passed to prepare_context, create_shared_memory and supervise

        Returns:
            Return value of supervise
        """
        num_processes = max(1, min(num_processes or cpu_count(), cpu_count()))
        return cls._start(WorkerManager(num_processes), cls.worker, num_processes, worker_params, **kwargs)

    @classmethod
    def run_serial(cls, num_processes: Optional[int] = None, worker_params: Any = None, **kwargs) -> Any:
        """Same as run, but every worker's share is processed in this process.

        num_processes sets how many workers are emulated.
        """
        num_processes = max(1, num_processes or 1)
        return cls._start(SerialManager(num_processes), cls.serial_worker, num_processes, worker_params, **kwargs)
