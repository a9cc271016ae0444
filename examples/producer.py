from pubworker.client.producer import JobPublisher


def main():
    # Broker started with `pubworker-broker --port 8085`
    publisher = JobPublisher("http://127.0.0.1:8085")

    print("Enqueueing demo jobs...")
    for i in range(10):
        job = publisher.enqueue("demo.greet", f"world {i}", queue="default")
        print(f"Enqueued {job.job_class} {job.job_id} as Message({job.provider_job_id})")

    publisher.enqueue("demo.slow", 15)
    publisher.enqueue("demo.flaky")
    publisher.close()


if __name__ == "__main__":
    main()
